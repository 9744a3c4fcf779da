"""Aggregate faceted flow rows into a deduplicated three-stage graph."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from backend.app.flow.units import bits_to_size

LOGGER = logging.getLogger(__name__)

UNKNOWN_NAME = "(Unknown)"
FACET_DEPTH = 3
ORIGIN_STAGE = 0
DESTINATION_STAGE = 1


@dataclass(frozen=True)
class FlowRow:
    """One faceted result row: (origin, device, destination) plus a measure."""

    facet: Tuple[str, str, str]
    value: float

    @classmethod
    def from_mapping(cls, raw: object, unknown_label: str = UNKNOWN_NAME) -> "FlowRow":
        """Normalise a raw query result row, substituting safe defaults.

        Missing or blank facet entries become ``unknown_label`` and entries past
        the third are ignored. A missing, non-numeric, negative or NaN value
        contributes zero.
        """

        if isinstance(raw, FlowRow):
            return raw
        if isinstance(raw, Mapping):
            raw_facet = raw.get("facet")
            raw_value = raw.get("value")
        else:
            raw_facet = getattr(raw, "facet", None)
            raw_value = getattr(raw, "value", None)
        if isinstance(raw_facet, (str, bytes)) or not isinstance(raw_facet, Sequence):
            entries: List[object] = [raw_facet] if isinstance(raw_facet, str) else []
        else:
            entries = list(raw_facet[:FACET_DEPTH])
        names = [_facet_name(entry, unknown_label) for entry in entries]
        while len(names) < FACET_DEPTH:
            names.append(unknown_label)
        return cls(facet=(names[0], names[1], names[2]), value=_as_measure(raw_value))


@dataclass(frozen=True)
class FlowNode:
    """Diagram node; ``id`` is its first-seen position within one build."""

    id: int
    name: str


@dataclass(frozen=True)
class FlowLink:
    """Weighted edge for one of the two fixed stages."""

    source: int
    target: int
    value: float
    color: str
    source_id: int
    stage: int


@dataclass(frozen=True)
class NodeSummary:
    """Cumulative throughput and color for one origin name."""

    name: str
    value: float
    color: str


@dataclass(frozen=True)
class SummaryEntry:
    """Row of the side summary shown next to the diagram."""

    name: str
    color: str
    value: float
    throughput: str


@dataclass(frozen=True)
class FlowGraph:
    """Fully built snapshot handed to readers."""

    nodes: Tuple[FlowNode, ...] = ()
    links: Tuple[FlowLink, ...] = ()
    node_summary: Tuple[NodeSummary, ...] = ()

    @classmethod
    def empty(cls) -> "FlowGraph":
        return cls()

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def link_count(self) -> int:
        return len(self.links)

    @property
    def is_empty(self) -> bool:
        return not self.nodes or not self.links


@dataclass
class _BuildContext:
    """Registries for a single build pass; never shared between passes."""

    palette: Sequence[str]
    nodes: List[FlowNode] = field(default_factory=list)
    node_ids: Dict[str, int] = field(default_factory=dict)
    summary: List[NodeSummary] = field(default_factory=list)
    summary_ids: Dict[str, int] = field(default_factory=dict)
    links: List[FlowLink] = field(default_factory=list)
    link_ids: Dict[Tuple[int, int, int], int] = field(default_factory=dict)

    def seed_summary(self, prior: Iterable[NodeSummary]) -> None:
        for entry in prior:
            if entry.name in self.summary_ids:
                LOGGER.warning("Duplicate origin '%s' in prior summary; keeping first", entry.name)
                continue
            self.summary_ids[entry.name] = len(self.summary)
            self.summary.append(NodeSummary(name=entry.name, value=entry.value, color=entry.color))

    def resolve_node(self, name: str) -> int:
        node_id = self.node_ids.get(name)
        if node_id is None:
            node_id = len(self.nodes)
            self.node_ids[name] = node_id
            self.nodes.append(FlowNode(id=node_id, name=name))
        return node_id

    def accumulate_summary(self, name: str, value: float) -> int:
        summary_id = self.summary_ids.get(name)
        if summary_id is None:
            summary_id = len(self.summary)
            color = self.palette[summary_id % len(self.palette)]
            self.summary_ids[name] = summary_id
            self.summary.append(NodeSummary(name=name, value=value, color=color))
            return summary_id
        current = self.summary[summary_id]
        self.summary[summary_id] = NodeSummary(
            name=current.name, value=current.value + value, color=current.color
        )
        return summary_id

    def accumulate_link(self, stage: int, source: int, target: int, value: float, summary_id: int) -> None:
        key = (stage, source, target)
        link_id = self.link_ids.get(key)
        if link_id is None:
            self.link_ids[key] = len(self.links)
            self.links.append(
                FlowLink(
                    source=source,
                    target=target,
                    value=value,
                    color=self.summary[summary_id].color,
                    source_id=summary_id,
                    stage=stage,
                )
            )
            return
        current = self.links[link_id]
        self.links[link_id] = FlowLink(
            source=current.source,
            target=current.target,
            value=current.value + value,
            color=current.color,
            source_id=current.source_id,
            stage=current.stage,
        )

    def snapshot(self) -> FlowGraph:
        return FlowGraph(
            nodes=tuple(self.nodes),
            links=tuple(self.links),
            node_summary=tuple(self.summary),
        )


class SankeyGraphBuilder:
    """Convert faceted flow rows into nodes, links and an origin summary."""

    def __init__(self, palette: Sequence[str], *, unknown_label: str = UNKNOWN_NAME) -> None:
        if not palette:
            raise ValueError("palette must contain at least one color")
        self._palette = tuple(palette)
        self._unknown_label = unknown_label

    @property
    def unknown_label(self) -> str:
        return self._unknown_label

    def build(
        self,
        rows: Iterable[object],
        prior_summary: Iterable[NodeSummary] = (),
    ) -> FlowGraph:
        """Build a fresh node/link registry, carrying ``prior_summary`` forward.

        Nodes are deduplicated by name across all facet positions and links by
        (stage, source, target); repeated occurrences accumulate value. The
        summary is matched by origin name so running totals survive refreshes.
        """

        context = _BuildContext(palette=self._palette)
        context.seed_summary(prior_summary)
        row_count = 0
        for raw in rows:
            row = FlowRow.from_mapping(raw, self._unknown_label)
            ids = [context.resolve_node(name) for name in row.facet]
            origin_name = context.nodes[ids[0]].name
            summary_id = context.accumulate_summary(origin_name, row.value)
            context.accumulate_link(ORIGIN_STAGE, ids[0], ids[1], row.value, summary_id)
            context.accumulate_link(DESTINATION_STAGE, ids[1], ids[2], row.value, summary_id)
            row_count += 1
        graph = context.snapshot()
        LOGGER.debug(
            "Built flow graph from %d rows (nodes=%d, links=%d, origins=%d)",
            row_count,
            graph.node_count,
            graph.link_count,
            len(graph.node_summary),
        )
        return graph


def rebuild(
    previous: FlowGraph,
    rows: Sequence[object],
    *,
    builder: SankeyGraphBuilder,
    reset: bool = False,
) -> FlowGraph:
    """Apply a freshly fetched batch on top of ``previous``.

    An empty batch means "no new data": ``previous`` is returned as-is.
    Otherwise nodes and links are rebuilt from scratch while the origin
    summary carries over unless ``reset`` is set.
    """

    if not rows:
        LOGGER.info("Empty flow batch received; retaining previous graph")
        return previous
    prior: Sequence[NodeSummary] = () if reset else previous.node_summary
    return builder.build(rows, prior)


def summary_table(
    summary: Iterable[NodeSummary],
    unknown_label: str = UNKNOWN_NAME,
) -> List[SummaryEntry]:
    """Rank origins by accumulated value, largest first."""

    ranked = sorted(summary, key=lambda entry: entry.value, reverse=True)
    return [
        SummaryEntry(
            name=entry.name.strip() or unknown_label,
            color=entry.color,
            value=entry.value,
            throughput=bits_to_size(entry.value),
        )
        for entry in ranked
    ]


def _facet_name(entry: object, unknown_label: str) -> str:
    if entry is None:
        return unknown_label
    name = str(entry)
    if not name.strip():
        return unknown_label
    return name


def _as_measure(value: object) -> float:
    if isinstance(value, bool):
        return 0.0
    if not isinstance(value, (int, float, str)):
        return 0.0
    try:
        measure = float(value)
    except (OverflowError, ValueError):
        return 0.0
    if math.isnan(measure) or math.isinf(measure) or measure < 0:
        return 0.0
    return measure


__all__ = [
    "FlowGraph",
    "FlowLink",
    "FlowNode",
    "FlowRow",
    "NodeSummary",
    "SankeyGraphBuilder",
    "SummaryEntry",
    "UNKNOWN_NAME",
    "rebuild",
    "summary_table",
]
