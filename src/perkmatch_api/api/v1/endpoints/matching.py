from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from perkmatch_api.api.dependencies.matching import schedule_matching_drain
from perkmatch_api.api.dependencies.security import require_internal_api_key

router = APIRouter(prefix="/matching", tags=["Matching"])


class BankSyncWebhook(BaseModel):
    itemId: Optional[str] = None
    webhookCode: Optional[str] = None
    newTransactions: Optional[int] = None


class MatchingTriggerResponse(BaseModel):
    status: str
    mode: str
    taskId: Optional[str] = None


@router.post(
    "/webhooks/bank-sync",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=MatchingTriggerResponse,
    dependencies=[Depends(require_internal_api_key)],
    summary="Bank sync notification; drains the unresolved backlog",
)
async def bank_sync_webhook(
    request: Request,
    payload: BankSyncWebhook | None = None,
) -> MatchingTriggerResponse:
    trigger = "bank_sync"
    if payload is not None and payload.webhookCode:
        trigger = f"bank_sync:{payload.webhookCode}"
    scheduled = schedule_matching_drain(request, trigger=trigger)
    return MatchingTriggerResponse(status="accepted", mode=scheduled["mode"], taskId=scheduled["taskId"])
