"""Customer notifications."""

from .backend import InMemoryPushBackend, PushBackend  # noqa: F401
from .service import REWARD_EARNED_CATEGORY, NotificationService  # noqa: F401
