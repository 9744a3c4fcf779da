"""FastAPI application factory for the flow diagram backend."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from backend.app.config import AppConfig, load_config
from backend.app.flow import FlowDiagramService, FlowDiagramView
from backend.app.telemetry import FlowQueryRepositoryProtocol, NerdGraphFlowRepository, PeerBy

LOGGER = logging.getLogger(__name__)


class FlowNodePayload(BaseModel):
    """Node description returned for diagram rendering."""

    id: int
    name: str


class FlowLinkPayload(BaseModel):
    """Link description including highlight opacity."""

    index: int
    source: int
    target: int
    value: float
    color: str
    source_id: int
    stage: int
    opacity: float


class SummaryEntryPayload(BaseModel):
    """Origin ranking row for the side summary."""

    name: str
    color: str
    value: float
    throughput: str


class FlowDiagramResponse(BaseModel):
    """Diagram payload consumed by the frontend."""

    status: str
    peer_by: str
    account_id: Optional[int] = None
    error: Optional[str] = None
    active_link: Optional[int] = None
    nodes: List[FlowNodePayload]
    links: List[FlowLinkPayload]
    summary: List[SummaryEntryPayload]
    node_count: int
    link_count: int


class PeerByRequest(BaseModel):
    """Grouping mode update."""

    peer_by: PeerBy


class ActiveLinkRequest(BaseModel):
    """Link hovered or selected by the user."""

    index: int = Field(..., ge=0, description="Position of the link in the current diagram")


class UISettingsResponse(BaseModel):
    """UI configuration defaults served to the frontend."""

    diagram: Dict[str, object]
    peer_by_options: List[Dict[str, str]]
    polling: Dict[str, object]


def create_app(
    config: AppConfig | None = None,
    repository: Optional[FlowQueryRepositoryProtocol] = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        config: Optional pre-loaded configuration. If omitted, the default
            configuration defined in config.yaml is used.
        repository: Optional flow row repository. When omitted an HTTP
            repository is created from the telemetry settings; without an API
            key the flow endpoints return ``503``.

    Returns:
        FastAPI: Configured FastAPI application.
    """

    resolved_config = config or load_config()
    app = FastAPI(title="Flow Diagram API", version=resolved_config.pipeline.version)
    app.state.app_config = resolved_config

    allowed_origins = resolved_config.ui.allowed_origins
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    owned_repository: Optional[NerdGraphFlowRepository] = None
    if repository is None:
        owned_repository = _build_default_repository(resolved_config)
        repository = owned_repository
    app.state.flow_repository = repository
    app.state.flow_service = _build_flow_service(resolved_config, repository)

    @app.get("/health", tags=["system"], summary="Service health probe")
    def health() -> dict[str, str]:
        """Return service health information."""

        return {"status": "ok", "pipeline_version": resolved_config.pipeline.version}

    @app.get("/api/ui/settings", tags=["ui"], summary="UI configuration defaults")
    def ui_settings() -> UISettingsResponse:
        """Return UI defaults sourced from the configuration file."""

        sankey = resolved_config.sankey
        diagram = {
            "height": resolved_config.ui.height,
            "width": resolved_config.ui.width,
            "default_peer_by": sankey.default_peer_by,
            "focused_link_opacity": sankey.focused_link_opacity,
            "blurred_link_opacity": sankey.blurred_link_opacity,
            "interval_seconds": resolved_config.telemetry.interval_seconds,
        }
        options = [{"value": mode.value, "label": mode.label} for mode in PeerBy]
        polling = {
            "refresh_interval_seconds": resolved_config.ui.polling.refresh_interval_seconds,
        }
        return UISettingsResponse(diagram=diagram, peer_by_options=options, polling=polling)

    @app.get("/api/flows/sankey", tags=["flows"], summary="Fetch the flow diagram")
    def flow_diagram(
        refresh: bool = Query(False, description="Fetch fresh rows before responding"),
        account_id: Optional[int] = Query(None, ge=1),
    ) -> FlowDiagramResponse:
        """Return nodes, highlighted links and the origin summary."""

        service = _require_flow_service(app)
        if refresh:
            service.refresh(account_id)
        return _diagram_response_from_view(service.current_view())

    @app.put("/api/flows/peer-by", tags=["flows"], summary="Change the origin grouping")
    def update_peer_by(
        request: PeerByRequest,
        account_id: Optional[int] = Query(None, ge=1),
    ) -> FlowDiagramResponse:
        """Switch grouping mode and rebuild with a fresh summary."""

        service = _require_flow_service(app)
        previous = service.state.peer_by
        service.set_peer_by(request.peer_by)
        if request.peer_by != previous:
            service.refresh(account_id)
        return _diagram_response_from_view(service.current_view())

    @app.put("/api/flows/active-link", tags=["flows"], summary="Highlight a link")
    def activate_link(request: ActiveLinkRequest = Body(...)) -> FlowDiagramResponse:
        """Mark a link as hovered/selected and return the re-highlighted diagram."""

        service = _require_flow_service(app)
        if service.activate_link(request.index) is None:
            raise HTTPException(status_code=404, detail="Link not found")
        return _diagram_response_from_view(service.current_view())

    @app.delete("/api/flows/active-link", tags=["flows"], summary="Clear link highlight")
    def deactivate_link() -> FlowDiagramResponse:
        """Clear the active link so every link renders blurred."""

        service = _require_flow_service(app)
        service.deactivate_link()
        return _diagram_response_from_view(service.current_view())

    @app.on_event("shutdown")
    def _shutdown() -> None:  # pragma: no cover - network resource cleanup
        if owned_repository is not None:
            try:
                owned_repository.close()
            except Exception:  # noqa: BLE001 - defensive close
                LOGGER.exception("Failed to close flow repository client")

    return app


def _build_default_repository(config: AppConfig) -> Optional[NerdGraphFlowRepository]:
    """Construct the HTTP flow repository when credentials are configured."""

    if not config.telemetry.api_key:
        LOGGER.warning("Telemetry API key missing; flow endpoints disabled")
        return None
    try:
        return NerdGraphFlowRepository(config.telemetry)
    except Exception:  # noqa: BLE001 - repository is optional
        LOGGER.exception("Failed to initialize flow repository")
        return None


def _build_flow_service(
    config: AppConfig, repository: Optional[FlowQueryRepositoryProtocol]
) -> Optional[FlowDiagramService]:
    if repository is None:
        return None
    return FlowDiagramService(repository, sankey=config.sankey, telemetry=config.telemetry)


def _require_flow_service(app: FastAPI) -> FlowDiagramService:
    service = getattr(app.state, "flow_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Flow diagram service unavailable")
    return service


def _diagram_response_from_view(view: FlowDiagramView) -> FlowDiagramResponse:
    nodes = [FlowNodePayload(id=node.id, name=node.name) for node in view.nodes]
    links = [
        FlowLinkPayload(
            index=link.index,
            source=link.source,
            target=link.target,
            value=link.value,
            color=link.color,
            source_id=link.source_id,
            stage=link.stage,
            opacity=link.opacity,
        )
        for link in view.links
    ]
    summary = [
        SummaryEntryPayload(
            name=entry.name,
            color=entry.color,
            value=entry.value,
            throughput=entry.throughput,
        )
        for entry in view.summary
    ]
    return FlowDiagramResponse(
        status=view.status.value,
        peer_by=view.peer_by.value,
        account_id=view.account_id,
        error=view.error,
        active_link=view.active_link,
        nodes=nodes,
        links=links,
        summary=summary,
        node_count=view.node_count,
        link_count=view.link_count,
    )
