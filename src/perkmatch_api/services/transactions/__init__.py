"""Transaction feed ingestion and support overrides."""

from .feed import FeedRecord, IngestResult, TransactionFeedService  # noqa: F401
from .overrides import (  # noqa: F401
    TransactionNotFoundError,
    TransactionOverrideService,
    TransactionStateError,
)
