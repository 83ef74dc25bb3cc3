"""Push backend implementations for reward notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol


class PushBackend(Protocol):
    """Protocol for push notification connectors."""

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        ...


@dataclass
class InMemoryPushBackend:
    """Keeps outbound pushes in memory; used locally and in tests."""

    sent_messages: List[dict[str, object]]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        self.sent_messages.append(
            {
                "recipient": recipient,
                "title": title,
                "body": body,
                "metadata": metadata or {},
            }
        )


__all__ = ["InMemoryPushBackend", "PushBackend"]
