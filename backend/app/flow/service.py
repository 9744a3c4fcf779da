"""Service coordinating flow fetches, graph rebuilds and link highlighting."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from threading import RLock
from typing import List, Optional

from backend.app.config import SankeyConfig, TelemetryConfig
from backend.app.flow.graph_builder import (
    FlowGraph,
    FlowNode,
    SankeyGraphBuilder,
    SummaryEntry,
    rebuild,
    summary_table,
)
from backend.app.flow.highlight import ActiveLinkRef, HighlightedLink, annotate_links
from backend.app.telemetry.query import FlowQuery, PeerBy
from backend.app.telemetry.repository import FlowQueryError, FlowQueryRepositoryProtocol

LOGGER = logging.getLogger(__name__)


class FlowStatus(str, Enum):
    """Lifecycle of the diagram data as seen by the rendering client."""

    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class FlowDiagramState:
    """Immutable snapshot of the service state."""

    graph: FlowGraph
    status: FlowStatus
    peer_by: PeerBy
    account_id: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class FlowDiagramView:
    """Render-ready diagram: nodes, highlighted links and origin summary."""

    nodes: List[FlowNode]
    links: List[HighlightedLink]
    summary: List[SummaryEntry]
    status: FlowStatus
    peer_by: PeerBy
    account_id: Optional[int]
    error: Optional[str]
    active_link: Optional[int]

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def link_count(self) -> int:
        return len(self.links)

    @property
    def has_data(self) -> bool:
        return bool(self.nodes) and bool(self.links)


class FlowDiagramService:
    """Keep the latest fully built flow graph for one diagram.

    Every fetch is tagged with a generation number. A result whose generation
    has been superseded (another refresh, or a grouping change) is discarded
    so readers never see data from a stale request.
    """

    def __init__(
        self,
        repository: FlowQueryRepositoryProtocol,
        *,
        sankey: SankeyConfig,
        telemetry: TelemetryConfig,
        builder: Optional[SankeyGraphBuilder] = None,
    ) -> None:
        self._repository = repository
        self._sankey = sankey
        self._telemetry = telemetry
        self._builder = builder or SankeyGraphBuilder(
            sankey.palette, unknown_label=sankey.unknown_label
        )
        self._lock = RLock()
        self._generation = 0
        self._reset_pending = False
        self._active: Optional[ActiveLinkRef] = None
        self._state = FlowDiagramState(
            graph=FlowGraph.empty(),
            status=FlowStatus.LOADING,
            peer_by=PeerBy(sankey.default_peer_by),
            account_id=telemetry.account_id,
        )

    @property
    def state(self) -> FlowDiagramState:
        with self._lock:
            return self._state

    def refresh(self, account_id: Optional[int] = None) -> FlowDiagramState:
        """Fetch the latest rows for ``account_id`` and rebuild the graph."""

        with self._lock:
            resolved_account = account_id or self._state.account_id
            if resolved_account is None:
                LOGGER.warning("Skipping flow refresh; no account configured")
                return self._state
            self._generation += 1
            generation = self._generation
            peer_by = self._state.peer_by
            reset = self._reset_pending
            if resolved_account != self._state.account_id:
                self._state = replace(self._state, account_id=resolved_account)
        query = FlowQuery.for_sankey(self._telemetry, peer_by)

        try:
            rows = list(self._repository.fetch_rows(resolved_account, query))
        except FlowQueryError as exc:
            LOGGER.warning("Flow query failed for account %s: %s", resolved_account, exc)
            return self._record_failure(generation, str(exc))
        except Exception:  # noqa: BLE001 - collaborator failures must not escape
            LOGGER.exception("Unexpected flow repository failure for account %s", resolved_account)
            return self._record_failure(generation, "Unable to fetch flow data")

        with self._lock:
            if generation != self._generation:
                LOGGER.info(
                    "Discarding stale flow result (generation=%d, latest=%d)",
                    generation,
                    self._generation,
                )
                return self._state
            previous = self._state.graph
            graph = rebuild(previous, rows, builder=self._builder, reset=reset)
            if rows:
                self._reset_pending = False
                self._active = None
            # previous graph still belongs to the old grouping until a reset build lands
            status = FlowStatus.LOADING if self._reset_pending else FlowStatus.READY
            self._state = replace(self._state, graph=graph, status=status, error=None)
            LOGGER.info(
                "Flow graph refreshed (account=%s, peer_by=%s, rows=%d, nodes=%d, links=%d)",
                resolved_account,
                peer_by.value,
                len(rows),
                graph.node_count,
                graph.link_count,
            )
            return self._state

    def set_peer_by(self, peer_by: PeerBy) -> FlowDiagramState:
        """Switch the origin grouping; the next build starts a fresh summary."""

        with self._lock:
            if peer_by == self._state.peer_by:
                return self._state
            self._generation += 1
            self._reset_pending = True
            self._active = None
            self._state = replace(self._state, peer_by=peer_by, status=FlowStatus.LOADING)
            LOGGER.info("Flow grouping changed to %s; summary will reset", peer_by.value)
            return self._state

    def activate_link(self, index: int) -> Optional[ActiveLinkRef]:
        with self._lock:
            self._active = ActiveLinkRef.from_link(self._state.graph.links, index)
            return self._active

    def deactivate_link(self) -> None:
        with self._lock:
            self._active = None

    def current_view(self) -> FlowDiagramView:
        """Return the current snapshot annotated for rendering."""

        with self._lock:
            state = self._state
            active = self._active
        graph = state.graph
        links = annotate_links(
            graph.links,
            active,
            focused=self._sankey.focused_link_opacity,
            blurred=self._sankey.blurred_link_opacity,
        )
        return FlowDiagramView(
            nodes=list(graph.nodes),
            links=links,
            summary=summary_table(graph.node_summary, self._builder.unknown_label),
            status=state.status,
            peer_by=state.peer_by,
            account_id=state.account_id,
            error=state.error,
            active_link=active.index if active is not None else None,
        )

    def _record_failure(self, generation: int, message: str) -> FlowDiagramState:
        with self._lock:
            if generation != self._generation:
                return self._state
            self._state = replace(self._state, status=FlowStatus.ERROR, error=message)
            return self._state


__all__ = ["FlowDiagramService", "FlowDiagramState", "FlowDiagramView", "FlowStatus"]
