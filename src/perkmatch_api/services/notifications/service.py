"""Reward-earned notifications for customers."""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.core.settings import settings
from perkmatch_api.models.notification import (
    Notification,
    NotificationChannelEnum,
    NotificationStatusEnum,
)
from perkmatch_api.services.rewards.ledger import RewardEarned

from .backend import InMemoryPushBackend, PushBackend

REWARD_EARNED_CATEGORY = "reward_earned"


class NotificationService:
    """Record the in-app notice and push it to the customer's devices."""

    def __init__(
        self,
        db_session: AsyncSession,
        push_backend: PushBackend | None = None,
        *,
        push_enabled: bool | None = None,
    ) -> None:
        self._db = db_session
        self._push = push_backend or InMemoryPushBackend()
        self._push_enabled = settings.push_notifications_enabled if push_enabled is None else push_enabled

    async def send_reward_earned(self, event: RewardEarned) -> Notification:
        title = f"Reward earned at {event.merchant_name}!"
        body = f"You earned {event.reward_description}. Show code {event.claim_code} to redeem."
        payload = {
            "merchant_id": str(event.merchant_id),
            "program_id": str(event.program_id),
            "claim_id": str(event.claim_id),
            "claim_code": event.claim_code,
        }
        notification = Notification(
            customer_id=event.customer_id,
            channel=NotificationChannelEnum.PUSH,
            status=NotificationStatusEnum.PENDING,
            category=REWARD_EARNED_CATEGORY,
            title=title,
            body=body,
            payload=payload,
        )
        self._db.add(notification)
        await self._db.flush()

        if not self._push_enabled:
            logger.debug("Push notifications disabled; stored in-app notice only", customer_id=event.customer_id)
            return notification

        try:
            await self._push.send_push(event.customer_id, title, body, metadata=payload)
        except Exception as exc:
            notification.status = NotificationStatusEnum.FAILED
            notification.error = str(exc)
            await self._db.flush()
            logger.warning(
                "Reward push notification failed",
                customer_id=event.customer_id,
                claim_id=str(event.claim_id),
                error=str(exc),
            )
            raise

        notification.status = NotificationStatusEnum.SENT
        notification.sent_at = datetime.now(timezone.utc)
        await self._db.flush()
        logger.info("Reward notification sent", customer_id=event.customer_id, claim_id=str(event.claim_id))
        return notification


__all__ = ["NotificationService", "REWARD_EARNED_CATEGORY"]
