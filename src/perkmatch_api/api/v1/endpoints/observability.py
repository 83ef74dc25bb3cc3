"""Matching pipeline observability snapshot."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from perkmatch_api.api.dependencies.security import require_internal_api_key
from perkmatch_api.observability.matching import get_matching_store

router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/matching",
    dependencies=[Depends(require_internal_api_key)],
    summary="Matching pipeline counters",
)
async def get_matching_snapshot() -> dict[str, object]:
    return get_matching_store().snapshot().as_dict()
