from __future__ import annotations

from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_accrual.core.settings import settings
from loyalty_accrual.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent pass")
    metrics: Dict[str, Any] | None = None


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/health/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    loop = getattr(request.app.state, "reconciliation_loop", None)
    if settings.accrual_worker_enabled and loop is not None:
        metrics = loop.metrics
        running = bool(loop.is_running)
        component_status: Literal["ready", "starting", "disabled", "error", "degraded"]
        component_status = "ready" if running else "starting"
        detail: str | None = None
        if metrics.fetch_errors and metrics.last_error:
            component_status = "degraded"
            detail = metrics.last_error
            status = "degraded" if status == "ready" else status
        elif not running:
            detail = "Accrual reconciliation loop not running"
            status = "degraded" if status == "ready" else status
        components["accrual_reconciliation"] = ComponentStatus(
            status=component_status,
            detail=detail,
            last_error_at=metrics.last_error_at.isoformat() if metrics.last_error_at else None,
            last_success_at=metrics.last_run_finished_at.isoformat() if metrics.last_run_finished_at else None,
            metrics=metrics.snapshot(),
        )
    else:
        components["accrual_reconciliation"] = ComponentStatus(
            status="disabled",
            detail="Accrual reconciliation loop disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)
