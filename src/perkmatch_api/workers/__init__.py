"""Background workers."""

from .locks import KeyedLockRegistry, get_lock_registry  # noqa: F401
from .transaction_matching import BatchSummary, TransactionMatchingWorker, TransactionOutcome  # noqa: F401
