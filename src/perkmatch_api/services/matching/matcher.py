"""Score card transactions against the verified merchant directory.

Scoring is deterministic, case-insensitive and whitespace-trimmed:

- exact name equality: 100
- merchant name contained in the transaction merchant name: 80
- transaction merchant name contained in the merchant name: 60
- any shared whitespace-delimited token longer than three characters: 40
- category overlap between transaction tags and merchant codes: +20

Only the first applicable name signal counts. Candidates below the confidence
threshold are discarded; ties keep the lowest merchant id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.models.merchant import Merchant, MerchantStatus

CONFIDENCE_THRESHOLD = 80
REVIEW_FLOOR = 60

EXACT_NAME_SCORE = 100
MERCHANT_IN_DESCRIPTOR_SCORE = 80
DESCRIPTOR_IN_MERCHANT_SCORE = 60
SHARED_TOKEN_SCORE = 40
CATEGORY_BONUS = 20
MIN_TOKEN_LENGTH = 4


@dataclass(frozen=True, slots=True)
class MerchantCandidate:
    """Read-only snapshot of a verified merchant used for scoring."""

    id: UUID
    name: str
    category_codes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    candidate: MerchantCandidate
    score: int


@dataclass(frozen=True, slots=True)
class MatchResult:
    merchant_id: Optional[UUID]
    score: int

    @property
    def matched(self) -> bool:
        return self.merchant_id is not None


NO_MATCH = MatchResult(merchant_id=None, score=0)


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower()


def _categories_overlap(categories: Iterable[str], category_codes: Iterable[str]) -> bool:
    tags = {_normalize(tag) for tag in categories if _normalize(tag)}
    codes = {_normalize(code) for code in category_codes if _normalize(code)}
    return bool(tags & codes)


def score_candidate(
    merchant_name: str | None,
    categories: Sequence[str] | None,
    candidate: MerchantCandidate,
) -> int:
    """Score one candidate for a transaction merchant name."""

    descriptor = _normalize(merchant_name)
    canonical = _normalize(candidate.name)
    if not descriptor or not canonical:
        return 0

    score = 0
    if descriptor == canonical:
        score = EXACT_NAME_SCORE
    elif canonical in descriptor:
        score = MERCHANT_IN_DESCRIPTOR_SCORE
    elif descriptor in canonical:
        score = DESCRIPTOR_IN_MERCHANT_SCORE
    else:
        descriptor_tokens = {token for token in descriptor.split() if len(token) >= MIN_TOKEN_LENGTH}
        canonical_tokens = {token for token in canonical.split() if len(token) >= MIN_TOKEN_LENGTH}
        if descriptor_tokens & canonical_tokens:
            score = SHARED_TOKEN_SCORE

    if _categories_overlap(categories or (), candidate.category_codes):
        score += CATEGORY_BONUS
    return score


def select_best_match(
    scored: Iterable[ScoredCandidate],
    *,
    threshold: int = CONFIDENCE_THRESHOLD,
) -> MatchResult:
    """Pick the highest score (lowest merchant id on ties) at or above the threshold."""

    best: ScoredCandidate | None = None
    for entry in scored:
        if best is None:
            best = entry
            continue
        if entry.score > best.score or (
            entry.score == best.score and entry.candidate.id < best.candidate.id
        ):
            best = entry

    if best is None or best.score < threshold:
        return MatchResult(merchant_id=None, score=best.score if best else 0)
    return MatchResult(merchant_id=best.candidate.id, score=best.score)


def match_transaction(
    merchant_name: str | None,
    categories: Sequence[str] | None,
    candidates: Sequence[MerchantCandidate],
    *,
    threshold: int = CONFIDENCE_THRESHOLD,
) -> MatchResult:
    """Return the best merchant for a transaction, or no match.

    Without a merchant name no candidate is considered at all.
    """

    if not _normalize(merchant_name):
        return NO_MATCH

    scored = [
        ScoredCandidate(candidate=candidate, score=score_candidate(merchant_name, categories, candidate))
        for candidate in candidates
    ]
    result = select_best_match(scored, threshold=threshold)

    if not result.matched and result.score >= REVIEW_FLOOR:
        logger.info(
            "Low-confidence merchant match needs review",
            merchant_name=merchant_name,
            best_score=result.score,
            threshold=threshold,
        )
    return result


async def load_verified_candidates(session: AsyncSession) -> list[MerchantCandidate]:
    """Read the current verified merchants; callers must not cache across runs."""

    stmt = (
        select(Merchant.id, Merchant.name, Merchant.category_codes)
        .where(Merchant.status == MerchantStatus.VERIFIED)
        .order_by(Merchant.id.asc())
    )
    result = await session.execute(stmt)
    candidates = [
        MerchantCandidate(id=row.id, name=row.name, category_codes=tuple(row.category_codes or ()))
        for row in result.all()
    ]
    logger.debug("Loaded verified merchant candidates", count=len(candidates))
    return candidates


__all__ = [
    "CONFIDENCE_THRESHOLD",
    "MatchResult",
    "MerchantCandidate",
    "NO_MATCH",
    "ScoredCandidate",
    "load_verified_candidates",
    "match_transaction",
    "score_candidate",
    "select_best_match",
]
