"""Support overrides: reset, force-match and claim cancellation."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.api.dependencies.matching import get_matching_worker
from perkmatch_api.api.dependencies.security import require_internal_api_key
from perkmatch_api.db.session import get_session
from perkmatch_api.services.rewards import (
    ClaimRedemptionService,
    MerchantNotFoundError,
    ProgressConflictError,
    RewardCodeExhaustedError,
)
from perkmatch_api.services.transactions import (
    TransactionNotFoundError,
    TransactionOverrideService,
    TransactionStateError,
)
from perkmatch_api.workers.transaction_matching import TransactionMatchingWorker

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_internal_api_key)],
)


class TransactionStateResponse(BaseModel):
    transactionId: UUID
    status: str
    merchantId: Optional[UUID] = None
    claimsIssued: int = 0


class ForceMatchRequest(BaseModel):
    merchantId: UUID


class ClaimStateResponse(BaseModel):
    claimId: UUID
    status: str
    cancelledAt: Optional[datetime] = None


@router.post("/transactions/{transaction_id}/reset", response_model=TransactionStateResponse)
async def reset_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> TransactionStateResponse:
    service = TransactionOverrideService(db)
    try:
        transaction = await service.reset(transaction_id)
    except TransactionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TransactionStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    response = TransactionStateResponse(transactionId=transaction.id, status=transaction.status.value)
    await db.commit()
    return response


@router.post("/transactions/{transaction_id}/force-match", response_model=TransactionStateResponse)
async def force_match_transaction(
    transaction_id: UUID,
    payload: ForceMatchRequest,
    worker: TransactionMatchingWorker = Depends(get_matching_worker),
) -> TransactionStateResponse:
    try:
        outcome = await worker.process_transaction(transaction_id, forced_merchant_id=payload.merchantId)
    except (TransactionNotFoundError, MerchantNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (RewardCodeExhaustedError, ProgressConflictError) as exc:
        logger.error("Force-match could not update the reward ledger", transaction_id=str(transaction_id))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if outcome.status == "skipped":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Transaction is already resolved")
    return TransactionStateResponse(
        transactionId=transaction_id,
        status="resolved",
        merchantId=outcome.merchant_id,
        claimsIssued=outcome.claims_issued,
    )


@router.post("/claims/{claim_id}/cancel", response_model=ClaimStateResponse)
async def cancel_claim(
    claim_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> ClaimStateResponse:
    claim = await ClaimRedemptionService(db).cancel(claim_id)
    if claim is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")
    response = ClaimStateResponse(claimId=claim.id, status=claim.status.value, cancelledAt=claim.cancelled_at)
    await db.commit()
    return response
