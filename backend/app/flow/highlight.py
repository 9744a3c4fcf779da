"""Link highlighting for the hovered or selected diagram link."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from backend.app.flow.graph_builder import FlowLink

DEFAULT_FOCUSED_OPACITY = 0.6
DEFAULT_BLURRED_OPACITY = 0.3


@dataclass(frozen=True)
class ActiveLinkRef:
    """Reference to the link the user is currently pointing at."""

    index: int
    source: int
    target: int
    source_id: int

    @classmethod
    def from_link(cls, links: Sequence[FlowLink], index: int) -> Optional["ActiveLinkRef"]:
        """Return a reference for ``links[index]`` or ``None`` when out of range."""

        if index < 0 or index >= len(links):
            return None
        link = links[index]
        return cls(index=index, source=link.source, target=link.target, source_id=link.source_id)


@dataclass(frozen=True)
class HighlightedLink:
    """Link copy annotated with its position and current opacity."""

    index: int
    source: int
    target: int
    value: float
    color: str
    source_id: int
    stage: int
    opacity: float


def neighborhood(links: Sequence[FlowLink], active: ActiveLinkRef) -> Set[int]:
    """Indices of links leaving the active target or entering the active source."""

    related: Set[int] = set()
    for index, link in enumerate(links):
        if link.source == active.target or link.target == active.source:
            related.add(index)
    return related


def resolve_opacities(
    links: Sequence[FlowLink],
    active: Optional[ActiveLinkRef],
    *,
    focused: float = DEFAULT_FOCUSED_OPACITY,
    blurred: float = DEFAULT_BLURRED_OPACITY,
) -> List[float]:
    """Return one opacity per link, aligned by index.

    The active link is focused, as is every neighborhood link attributed to
    the same origin group. Everything else is blurred. An index outside
    ``links`` leaves every link blurred.
    """

    opacities = [blurred] * len(links)
    if active is None or not 0 <= active.index < len(links):
        return opacities
    opacities[active.index] = focused
    for index in neighborhood(links, active):
        if links[index].source_id == active.source_id:
            opacities[index] = focused
    return opacities


def annotate_links(
    links: Sequence[FlowLink],
    active: Optional[ActiveLinkRef],
    *,
    focused: float = DEFAULT_FOCUSED_OPACITY,
    blurred: float = DEFAULT_BLURRED_OPACITY,
) -> List[HighlightedLink]:
    """Copy ``links`` with the opacity each should be rendered at."""

    opacities = resolve_opacities(links, active, focused=focused, blurred=blurred)
    return [
        HighlightedLink(
            index=index,
            source=link.source,
            target=link.target,
            value=link.value,
            color=link.color,
            source_id=link.source_id,
            stage=link.stage,
            opacity=opacity,
        )
        for index, (link, opacity) in enumerate(zip(links, opacities))
    ]


__all__ = [
    "ActiveLinkRef",
    "HighlightedLink",
    "annotate_links",
    "neighborhood",
    "resolve_opacities",
]
