"""Session-aware dependencies for donor-facing APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Header, HTTPException, status


async def require_donor_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
) -> UUID:
    """Resolve the authenticated donor id forwarded by the session gateway."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        return UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error
