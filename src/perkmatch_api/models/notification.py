from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from perkmatch_api.db.base import Base


class NotificationStatusEnum(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationChannelEnum(str, Enum):
    PUSH = "push"
    EMAIL = "email"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(String, nullable=False, index=True)
    channel = Column(
        SqlEnum(NotificationChannelEnum, name="notification_channel_enum"),
        nullable=False,
        default=NotificationChannelEnum.PUSH,
    )
    status = Column(
        SqlEnum(NotificationStatusEnum, name="notification_status_enum"),
        nullable=False,
        default=NotificationStatusEnum.PENDING,
    )
    category = Column(String, nullable=False)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
