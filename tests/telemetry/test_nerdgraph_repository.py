"""Tests for the HTTP flow row repository."""
from __future__ import annotations

import json

import httpx
import pytest

from backend.app.config import TelemetryConfig
from backend.app.telemetry.query import FlowQuery, PeerBy
from backend.app.telemetry.repository import FlowQueryError, NerdGraphFlowRepository

ENDPOINT = "http://telemetry.test/graphql"


def _settings(api_key: str | None = "secret-key") -> TelemetryConfig:
    return TelemetryConfig(
        endpoint=ENDPOINT,
        api_key=api_key,
        timeout_seconds=5,
        event_type="ipfix",
        measure="sum(octetDeltaCount * 64000)",
        device_facet="agent",
        destination_facet="destinationIPv4Address",
        interval_seconds=30,
        limit=50,
    )


def _results_body(results: object) -> dict:
    return {"data": {"actor": {"account": {"nrql": {"results": results}}}}}


def _repository(handler, api_key: str | None = "secret-key") -> NerdGraphFlowRepository:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return NerdGraphFlowRepository(_settings(api_key), client=client)


def _query() -> FlowQuery:
    return FlowQuery.for_sankey(_settings(), PeerBy.PEER_NAME)


def test_fetch_rows_returns_results() -> None:
    """A successful response yields the raw facet rows."""

    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json=_results_body(
                [
                    {"facet": ["peer-a", "router", "10.0.0.1"], "value": 128000},
                    {"facet": ["peer-b", "router", "10.0.0.2"], "value": 64000},
                ]
            ),
        )

    repository = _repository(handler)

    rows = repository.fetch_rows(1234, _query())

    assert [row["value"] for row in rows] == [128000, 64000]
    assert captured["headers"]["API-Key"] == "secret-key"
    variables = captured["body"]["variables"]
    assert variables["accountId"] == 1234
    assert variables["nrql"] == _query().to_nrql()


def test_fetch_rows_without_api_key_omits_header() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "API-Key" not in request.headers
        return httpx.Response(200, json=_results_body([]))

    repository = _repository(handler, api_key=None)

    assert repository.fetch_rows(1, _query()) == []


def test_fetch_rows_treats_null_results_as_empty() -> None:
    repository = _repository(lambda request: httpx.Response(200, json=_results_body(None)))

    assert repository.fetch_rows(1, _query()) == []


def test_fetch_rows_drops_non_mapping_entries() -> None:
    body = _results_body([{"facet": ["a", "b", "c"], "value": 1}, "garbage", 3])
    repository = _repository(lambda request: httpx.Response(200, json=body))

    rows = repository.fetch_rows(1, _query())

    assert rows == [{"facet": ["a", "b", "c"], "value": 1}]


def test_fetch_rows_raises_on_status() -> None:
    repository = _repository(lambda request: httpx.Response(503, text="unavailable"))

    with pytest.raises(FlowQueryError, match="503"):
        repository.fetch_rows(1, _query())


def test_fetch_rows_raises_on_graphql_errors() -> None:
    body = {"errors": [{"message": "NRQL Syntax Error"}], "data": None}
    repository = _repository(lambda request: httpx.Response(200, json=body))

    with pytest.raises(FlowQueryError, match="NRQL Syntax Error"):
        repository.fetch_rows(1, _query())


def test_fetch_rows_raises_on_unexpected_shape() -> None:
    repository = _repository(lambda request: httpx.Response(200, json={"data": {"actor": {}}}))

    with pytest.raises(FlowQueryError, match="account"):
        repository.fetch_rows(1, _query())


def test_fetch_rows_raises_on_non_json_payload() -> None:
    repository = _repository(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(FlowQueryError, match="non-JSON"):
        repository.fetch_rows(1, _query())


def test_fetch_rows_wraps_transport_errors() -> None:
    class ErrorTransport(httpx.BaseTransport):
        def handle_request(self, request: httpx.Request) -> httpx.Response:  # type: ignore[override]
            raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=ErrorTransport())
    repository = NerdGraphFlowRepository(_settings(), client=client)

    with pytest.raises(FlowQueryError, match="connection refused"):
        repository.fetch_rows(1, _query())

    client.close()
