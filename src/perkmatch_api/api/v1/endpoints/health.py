from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.core.settings import settings
from perkmatch_api.db.session import get_session

router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "idle", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    overall: Literal["ready", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except SQLAlchemyError as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        overall = "error"

    if not settings.matching_worker_enabled:
        components["matching_worker"] = ComponentStatus(status="disabled", detail="Disabled via settings")
    elif settings.celery_broker_url:
        components["matching_worker"] = ComponentStatus(status="ready", detail="Celery continuation")
    else:
        worker = getattr(request.app.state, "matching_worker", None)
        running = bool(worker is not None and worker.is_running)
        components["matching_worker"] = ComponentStatus(
            status="ready" if running else "idle",
            detail="Drain in progress" if running else None,
        )

    return ReadinessPayload(status=overall, components=components)
