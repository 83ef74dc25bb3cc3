from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.core.settings import settings
from perkmatch_api.db.session import get_session
from perkmatch_api.models.merchant import Merchant

ADMIN_ROLE = "admin"


async def require_internal_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Guard for feed, webhook and support routes; an empty key disables the check."""

    if not settings.internal_api_key:
        return

    if x_api_key != settings.internal_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def require_merchant_access(
    merchant_id: UUID,
    session_user: str | None = Header(None, alias="X-Session-User"),
    session_role: str | None = Header(None, alias="X-Session-Role"),
    db: AsyncSession = Depends(get_session),
) -> Merchant:
    """Resolve the merchant and ensure the forwarded session may act for it."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    merchant = await db.get(Merchant, merchant_id)
    if merchant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Merchant not found")

    is_admin = (session_role or "").strip().lower() == ADMIN_ROLE
    if not is_admin and merchant.owner_id != session_user:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized for this merchant",
        )
    return merchant
