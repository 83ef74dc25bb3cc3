"""SQLAlchemy models package."""

from .merchant import (  # noqa: F401
    Merchant,
    MerchantStatus,
    RewardProgram,
    RewardProgramStatus,
    RewardProgramType,
    RewardRule,
    SpendRule,
    VisitRule,
)
from .notification import Notification, NotificationChannelEnum, NotificationStatusEnum  # noqa: F401
from .rewards import (  # noqa: F401
    RewardClaim,
    RewardClaimStatus,
    RewardProgress,
    RewardProgressStatus,
)
from .transaction import Transaction, TransactionStatus  # noqa: F401
