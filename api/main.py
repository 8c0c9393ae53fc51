from __future__ import annotations

from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, status

from models.schemas import SyncStatus
from pipeline.service import AllowListService
from pipeline.target import effective_target
from utils.config_loader import load_settings
from utils.logger import get_logger

from .auth import require_admin
from .refresh import RefreshScheduler
from .schemas import LogResponse, RulesResponse, SettingsUpdateRequest, SyncResponse


def create_app(service: Optional[AllowListService] = None, start_scheduler: bool = True) -> FastAPI:
    """
    Build the admin API. Run with `uvicorn api.main:create_app --factory`.
    """
    service = service or AllowListService(load_settings())
    api_logger = get_logger("api.app", service.settings.log_level, "api.log")
    refresh_scheduler = RefreshScheduler()

    app = FastAPI(
        title="XML-RPC Allow List API",
        version="1.0.0",
        description=(
            "Manual sync trigger and status surface for the xmlrpc.php IP allow list. "
            "A background scheduler runs the same sync once per configured interval."
        ),
    )
    app.state.service = service
    app.state.scheduler = refresh_scheduler

    # ---------------------------------------------------------------------------
    # Startup / shutdown
    # ---------------------------------------------------------------------------
    @app.on_event("startup")
    def startup_event() -> None:
        if start_scheduler:
            refresh_scheduler.start(service.settings.refresh_interval_minutes, service.sync)

    @app.on_event("shutdown")
    def shutdown_event() -> None:
        refresh_scheduler.stop()

    # ---------------------------------------------------------------------------
    # Health check
    # ---------------------------------------------------------------------------
    @app.get("/health", tags=["system"])
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ---------------------------------------------------------------------------
    # Sync
    # ---------------------------------------------------------------------------
    @app.post("/sync", response_model=SyncResponse, tags=["sync"])
    async def sync_endpoint(_: str = Depends(require_admin)) -> SyncResponse:
        outcome = await service.sync_async()
        api_logger.info("Manual sync requested via API: %s", outcome.status)
        return SyncResponse.from_outcome(outcome)

    @app.get("/status", response_model=SyncStatus, tags=["sync"])
    def status_endpoint(_: str = Depends(require_admin)) -> SyncStatus:
        return service.status()

    @app.get("/log", response_model=LogResponse, tags=["sync"])
    def log_endpoint(limit: Optional[int] = None, _: str = Depends(require_admin)) -> LogResponse:
        return LogResponse(lines=service.log_lines(limit))

    @app.get("/rules", response_model=RulesResponse, tags=["sync"])
    def rules_endpoint(_: str = Depends(require_admin)) -> RulesResponse:
        return RulesResponse(
            target=effective_target(service.detect_target()).value,
            rules=service.manual_rules(),
            ips=service.display_ips(),
        )

    # ---------------------------------------------------------------------------
    # Settings
    # ---------------------------------------------------------------------------
    @app.put("/settings", response_model=Optional[SyncResponse], tags=["settings"])
    def settings_endpoint(
        payload: SettingsUpdateRequest,
        _: str = Depends(require_admin),
    ) -> Optional[SyncResponse]:
        try:
            outcome = service.update_settings(
                enabled=payload.enabled,
                ip_source=payload.ip_source,
                custom_ips=payload.custom_ips,
                allow_local_source=False,
            )
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
        api_logger.info("Settings updated via API")
        return SyncResponse.from_outcome(outcome) if outcome else None

    return app


__all__ = ["create_app"]
