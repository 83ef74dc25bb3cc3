"""Human-enterable reward claim codes."""

from __future__ import annotations

import random
import secrets
from datetime import datetime

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.core.settings import settings
from perkmatch_api.models.merchant import RewardProgram
from perkmatch_api.models.rewards import RewardClaim, RewardClaimStatus, RewardProgress

# Uppercase letters without I, L, O plus all digits: 33 characters.
REWARD_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ0123456789"
REWARD_CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 5

_SYSTEM_RANDOM = secrets.SystemRandom()


class RewardCodeExhaustedError(RuntimeError):
    """Raised when every drawn code collided with an existing claim."""


def generate_reward_code(length: int = REWARD_CODE_LENGTH, rng: random.Random | None = None) -> str:
    source = rng or _SYSTEM_RANDOM
    return "".join(source.choice(REWARD_CODE_ALPHABET) for _ in range(length))


def normalize_reward_code(raw: str) -> str:
    """Canonical form of a customer-presented code (case, spacing and dashes ignored)."""

    return "".join(raw.split()).replace("-", "").upper()


class RewardCodeGenerator:
    """Draws codes that are not yet present in storage."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        length: int | None = None,
        max_attempts: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._db = db_session
        self._length = length or settings.reward_code_length
        self._max_attempts = max_attempts or settings.reward_code_max_attempts
        self._rng = rng

    async def issue(self) -> str:
        for attempt in range(1, self._max_attempts + 1):
            candidate = generate_reward_code(self._length, self._rng)
            if not await self._exists(candidate):
                return candidate
            logger.warning("Reward code collision", attempt=attempt)

        logger.error("Reward code generation exhausted", attempts=self._max_attempts)
        raise RewardCodeExhaustedError(
            f"Unable to draw a unique reward code after {self._max_attempts} attempts"
        )

    async def mint_claim(
        self,
        *,
        progress: RewardProgress,
        program: RewardProgram,
        issued_at: datetime,
    ) -> RewardClaim:
        """Stage a pending claim for a completed progress cycle under a fresh code."""

        code = await self.issue()
        claim = RewardClaim(
            code=code,
            customer_id=progress.customer_id,
            merchant_id=progress.merchant_id,
            program_id=program.id,
            progress_id=progress.id,
            program_name=program.name,
            reward_description=program.reward_description,
            status=RewardClaimStatus.PENDING,
            issued_at=issued_at,
        )
        self._db.add(claim)
        return claim

    async def _exists(self, code: str) -> bool:
        stmt = select(RewardClaim.id).where(RewardClaim.code == code).limit(1)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none() is not None


__all__ = [
    "MAX_CODE_ATTEMPTS",
    "REWARD_CODE_ALPHABET",
    "REWARD_CODE_LENGTH",
    "RewardCodeExhaustedError",
    "RewardCodeGenerator",
    "generate_reward_code",
    "normalize_reward_code",
]
