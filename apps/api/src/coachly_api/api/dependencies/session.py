"""Session-aware dependencies for influencer self-service APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.db.session import get_session
from coachly_api.models.influencer import Influencer


async def require_influencer_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> Influencer:
    """Resolve the influencer profile of the user forwarded by the frontend session."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        user_id = UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error

    stmt = select(Influencer).where(Influencer.user_id == user_id)
    result = await db.execute(stmt)
    influencer = result.scalar_one_or_none()
    if influencer is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No influencer profile for session user",
        )

    return influencer
