"""Flow diagram aggregation, highlighting and the diagram service."""

from .graph_builder import (
    FlowGraph,
    FlowLink,
    FlowNode,
    FlowRow,
    NodeSummary,
    SankeyGraphBuilder,
    SummaryEntry,
    rebuild,
    summary_table,
)
from .highlight import ActiveLinkRef, HighlightedLink, annotate_links, resolve_opacities
from .service import FlowDiagramService, FlowDiagramState, FlowDiagramView, FlowStatus
from .units import bits_to_size

__all__ = [
    "ActiveLinkRef",
    "FlowDiagramService",
    "FlowDiagramState",
    "FlowDiagramView",
    "FlowGraph",
    "FlowLink",
    "FlowNode",
    "FlowRow",
    "FlowStatus",
    "HighlightedLink",
    "NodeSummary",
    "SankeyGraphBuilder",
    "SummaryEntry",
    "annotate_links",
    "bits_to_size",
    "rebuild",
    "resolve_opacities",
    "summary_table",
]
