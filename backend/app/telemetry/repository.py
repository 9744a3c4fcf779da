"""Data access for faceted flow rows."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx
from typing_extensions import Protocol

from backend.app.config import TelemetryConfig
from backend.app.telemetry.query import FlowQuery

LOGGER = logging.getLogger(__name__)


class FlowQueryError(RuntimeError):
    """Raised when the telemetry backend cannot produce flow rows."""


class FlowQueryRepositoryProtocol(Protocol):
    """Protocol describing the query-execution collaborator."""

    def fetch_rows(self, account_id: int, query: FlowQuery) -> Sequence[Mapping[str, object]]:
        """Return raw faceted rows (``{"facet": [...], "value": n}``) for ``query``."""


class NerdGraphFlowRepository(FlowQueryRepositoryProtocol):
    """Run flow queries through a GraphQL NRQL endpoint."""

    _QUERY = """
        query FlowRows($accountId: Int!, $nrql: Nrql!, $timeout: Seconds) {
          actor {
            account(id: $accountId) {
              nrql(query: $nrql, timeout: $timeout) {
                results
              }
            }
          }
        }
    """

    def __init__(
        self,
        settings: TelemetryConfig,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=settings.timeout_seconds)

    def fetch_rows(self, account_id: int, query: FlowQuery) -> Sequence[Mapping[str, object]]:
        nrql = query.to_nrql()
        payload = {
            "query": self._QUERY,
            "variables": {
                "accountId": account_id,
                "nrql": nrql,
                "timeout": int(self._settings.timeout_seconds),
            },
        }
        headers = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["API-Key"] = self._settings.api_key
        start_time = time.monotonic()
        try:
            response = self._client.post(self._settings.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            LOGGER.error(
                "Flow query request raised an error",
                extra={"account_id": account_id, "error": str(exc)},
            )
            raise FlowQueryError(f"Flow query request failed: {exc}") from exc
        latency_ms = (time.monotonic() - start_time) * 1000
        if response.status_code != httpx.codes.OK:
            LOGGER.warning(
                "Flow query failed with status",
                extra={
                    "account_id": account_id,
                    "status_code": response.status_code,
                    "latency_ms": latency_ms,
                },
            )
            raise FlowQueryError(f"Flow query returned {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            LOGGER.warning("Flow query returned non-JSON payload", extra={"account_id": account_id})
            raise FlowQueryError("Flow query returned non-JSON payload") from exc
        rows = self._extract_results(body)
        LOGGER.info(
            "Flow query succeeded",
            extra={"account_id": account_id, "rows": len(rows), "latency_ms": latency_ms},
        )
        return rows

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    @staticmethod
    def _extract_results(body: object) -> List[Dict[str, Any]]:
        if not isinstance(body, Mapping):
            raise FlowQueryError("Flow query response is not a mapping")
        errors = body.get("errors")
        if errors:
            messages = [
                str(error.get("message", error)) if isinstance(error, Mapping) else str(error)
                for error in errors
            ]
            raise FlowQueryError("Flow query rejected: " + "; ".join(messages))
        node: object = body
        for key in ("data", "actor", "account", "nrql", "results"):
            if not isinstance(node, Mapping) or key not in node:
                raise FlowQueryError(f"Flow query response missing '{key}'")
            node = node[key]
        if node is None:
            return []
        if not isinstance(node, list):
            raise FlowQueryError("Flow query results are not a list")
        rows = [dict(item) for item in node if isinstance(item, Mapping)]
        if len(rows) != len(node):
            LOGGER.warning("Dropped %d non-mapping flow result entries", len(node) - len(rows))
        return rows


__all__ = ["FlowQueryError", "FlowQueryRepositoryProtocol", "NerdGraphFlowRepository"]
