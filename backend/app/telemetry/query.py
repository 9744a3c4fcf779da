"""Query descriptions handed to the telemetry backend."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from backend.app.config import TelemetryConfig


class PeerBy(str, Enum):
    """Attribute that populates the origin stage of the diagram."""

    PEER_NAME = "peerName"
    AS_NUMBER = "bgpSourceAsNumber"

    @property
    def label(self) -> str:
        return _PEER_BY_LABELS[self]


_PEER_BY_LABELS = {
    PeerBy.PEER_NAME: "Peer Name",
    PeerBy.AS_NUMBER: "AS Number",
}


@dataclass(frozen=True)
class FlowQuery:
    """Faceted flow volume query over a trailing time window."""

    event_type: str
    measure: str
    facets: Tuple[str, str, str]
    since_seconds: int
    limit: int
    where_clause: str = ""

    @classmethod
    def for_sankey(
        cls,
        settings: TelemetryConfig,
        peer_by: PeerBy,
        *,
        interval_seconds: int | None = None,
    ) -> "FlowQuery":
        """Build the origin -> device -> destination query for ``peer_by``."""

        return cls(
            event_type=settings.event_type,
            measure=settings.measure,
            facets=(peer_by.value, settings.device_facet, settings.destination_facet),
            since_seconds=interval_seconds or settings.interval_seconds,
            limit=settings.limit,
            where_clause=settings.where_clause,
        )

    @property
    def peer_by(self) -> str:
        return self.facets[0]

    def to_nrql(self) -> str:
        parts = [f"FROM {self.event_type}", f"SELECT {self.measure} as 'value'"]
        where = self.where_clause.strip()
        if where:
            parts.append(where)
        parts.append("FACET " + ", ".join(self.facets))
        parts.append(f"SINCE {self.since_seconds} seconds ago")
        parts.append(f"LIMIT {self.limit}")
        return " ".join(parts)


__all__ = ["FlowQuery", "PeerBy"]
