"""Merchant-facing claim preview and redemption."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.api.dependencies.security import require_merchant_access
from perkmatch_api.db.session import get_session
from perkmatch_api.models.merchant import Merchant
from perkmatch_api.services.rewards import ClaimRedemptionService, RedemptionResult

router = APIRouter(prefix="/merchants/{merchant_id}/claims", tags=["Claims"])


class ClaimDetail(BaseModel):
    id: UUID
    code: str
    customerId: str
    programId: UUID
    programName: str
    rewardDescription: str
    status: str
    issuedAt: Optional[datetime] = None
    redeemedAt: Optional[datetime] = None
    redeemedBy: Optional[str] = None


class RedemptionResponse(BaseModel):
    outcome: str
    claim: Optional[ClaimDetail] = None


def _to_response(result: RedemptionResult) -> RedemptionResponse:
    claim = result.claim
    if claim is None:
        return RedemptionResponse(outcome=result.outcome.value)
    return RedemptionResponse(
        outcome=result.outcome.value,
        claim=ClaimDetail(
            id=claim.id,
            code=claim.code,
            customerId=claim.customer_id,
            programId=claim.program_id,
            programName=claim.program_name,
            rewardDescription=claim.reward_description,
            status=claim.status.value,
            issuedAt=claim.issued_at,
            redeemedAt=claim.redeemed_at,
            redeemedBy=claim.redeemed_by,
        ),
    )


@router.get("/{code}", response_model=RedemptionResponse, summary="Preview a claim code")
async def preview_claim(
    code: str,
    merchant: Merchant = Depends(require_merchant_access),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    result = await ClaimRedemptionService(db).preview(merchant.id, code)
    return _to_response(result)


@router.post("/{code}/redeem", response_model=RedemptionResponse, summary="Redeem a claim code")
async def redeem_claim(
    code: str,
    merchant: Merchant = Depends(require_merchant_access),
    session_user: str = Header(..., alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    result = await ClaimRedemptionService(db).confirm(merchant.id, code, redeemer_id=session_user)
    response = _to_response(result)
    await db.commit()
    return response
