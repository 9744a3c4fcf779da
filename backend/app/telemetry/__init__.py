"""Telemetry query descriptions and the flow row repository."""

from .query import FlowQuery, PeerBy
from .repository import FlowQueryError, FlowQueryRepositoryProtocol, NerdGraphFlowRepository

__all__ = [
    "FlowQuery",
    "FlowQueryError",
    "FlowQueryRepositoryProtocol",
    "NerdGraphFlowRepository",
    "PeerBy",
]
