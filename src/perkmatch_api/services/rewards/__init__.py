"""Reward ledger, claim codes and redemption."""

from .codes import (  # noqa: F401
    REWARD_CODE_ALPHABET,
    RewardCodeExhaustedError,
    RewardCodeGenerator,
    generate_reward_code,
    normalize_reward_code,
)
from .ledger import (  # noqa: F401
    LedgerOutcome,
    LedgerTransaction,
    MerchantNotFoundError,
    ProgramResult,
    ProgressConflictError,
    RewardEarned,
    RewardLedgerService,
)
from .redemption import ClaimRedemptionService, RedemptionOutcome, RedemptionResult  # noqa: F401
