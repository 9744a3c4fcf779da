"""Tests for flow query descriptions."""

from __future__ import annotations

from backend.app.config import TelemetryConfig
from backend.app.telemetry.query import FlowQuery, PeerBy


def _settings(where_clause: str = "WHERE octetDeltaCount IS NOT NULL") -> TelemetryConfig:
    return TelemetryConfig(
        endpoint="http://telemetry.test/graphql",
        timeout_seconds=5,
        event_type="ipfix",
        measure="sum(octetDeltaCount * 64000)",
        where_clause=where_clause,
        device_facet="agent",
        destination_facet="destinationIPv4Address",
        interval_seconds=30,
        limit=50,
    )


def test_sankey_query_renders_nrql() -> None:
    query = FlowQuery.for_sankey(_settings(), PeerBy.PEER_NAME)

    assert query.to_nrql() == (
        "FROM ipfix SELECT sum(octetDeltaCount * 64000) as 'value'"
        " WHERE octetDeltaCount IS NOT NULL"
        " FACET peerName, agent, destinationIPv4Address"
        " SINCE 30 seconds ago LIMIT 50"
    )


def test_sankey_query_groups_by_as_number() -> None:
    query = FlowQuery.for_sankey(_settings(where_clause=""), PeerBy.AS_NUMBER, interval_seconds=300)

    assert query.peer_by == "bgpSourceAsNumber"
    assert query.since_seconds == 300
    assert "WHERE" not in query.to_nrql()
    assert "FACET bgpSourceAsNumber, agent, destinationIPv4Address" in query.to_nrql()


def test_peer_by_accepts_wire_values() -> None:
    assert PeerBy("peerName") is PeerBy.PEER_NAME
    assert PeerBy.AS_NUMBER.label == "AS Number"
