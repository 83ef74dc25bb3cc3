"""Feed ingester endpoint."""

from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.api.dependencies.matching import schedule_matching_drain
from perkmatch_api.api.dependencies.security import require_internal_api_key
from perkmatch_api.db.session import get_session
from perkmatch_api.services.transactions import FeedRecord, TransactionFeedService

router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"],
    dependencies=[Depends(require_internal_api_key)],
)


class FeedTransaction(BaseModel):
    externalId: str = Field(..., min_length=1)
    customerId: str = Field(..., min_length=1)
    amountMinor: int = Field(..., description="Signed amount in minor currency units")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    merchantName: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    postedOn: date

    def to_record(self) -> FeedRecord:
        return FeedRecord(
            external_id=self.externalId,
            customer_id=self.customerId,
            amount_minor=self.amountMinor,
            currency=self.currency,
            merchant_name=self.merchantName,
            categories=tuple(self.categories),
            posted_on=self.postedOn,
        )


class FeedBatchRequest(BaseModel):
    added: List[FeedTransaction] = Field(default_factory=list)
    modified: List[FeedTransaction] = Field(default_factory=list)
    triggerMatching: bool = True


class FeedBatchResponse(BaseModel):
    created: int
    duplicates: int
    modified: int
    transactionIds: List[UUID]
    matching: dict


@router.post("/feed", response_model=FeedBatchResponse, summary="Ingest feed transactions")
async def ingest_feed(
    payload: FeedBatchRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> FeedBatchResponse:
    service = TransactionFeedService(db)
    created = 0
    duplicates = 0
    transaction_ids: list[UUID] = []
    for item in payload.added:
        result = await service.ingest(item.to_record())
        transaction_ids.append(result.transaction.id)
        if result.created:
            created += 1
        else:
            duplicates += 1

    modified = 0
    for item in payload.modified:
        if await service.apply_modification(item.to_record()) is not None:
            modified += 1

    await db.commit()

    matching: dict = {"mode": "skipped", "taskId": None}
    if payload.triggerMatching and created:
        matching = schedule_matching_drain(request, trigger="feed")

    return FeedBatchResponse(
        created=created,
        duplicates=duplicates,
        modified=modified,
        transactionIds=transaction_ids,
        matching=matching,
    )
