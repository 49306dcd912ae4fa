"""Session store: create, validate, refresh, destroy and sweep login sessions."""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mozarela.config import settings
from mozarela.exceptions import Unauthenticated
from mozarela.models.session import Session

logger = logging.getLogger(__name__)


def _new_token() -> str:
    return secrets.token_urlsafe(32)


def session_ttl() -> timedelta:
    return timedelta(seconds=settings.session_ttl_seconds)


async def get_session(db: AsyncSession, token: str) -> Optional[Session]:
    """Retrieve a session by token, expired or not."""
    result = await db.execute(select(Session).where(Session.token == token))
    return result.scalar_one_or_none()


async def create_session(db: AsyncSession, user_id: str) -> Session:
    """Create a new session with its own CSRF token."""
    now = datetime.utcnow()
    session = Session(
        token=_new_token(),
        user_id=user_id,
        created_at=now,
        expires_at=now + session_ttl(),
        csrf_token=_new_token(),
        last_used_at=now,
    )
    db.add(session)
    await db.flush()
    logger.debug("Session created for user %s", user_id)
    return session


async def validate_session(db: AsyncSession, token: Optional[str]) -> Session:
    """
    Resolve a token to a live session and mark it as used.

    An expired session is deleted (and committed) before Unauthenticated is
    raised, so the caller's rollback does not bring it back.
    """
    if not token:
        raise Unauthenticated("Missing session token")

    session = await get_session(db, token)
    if session is None:
        raise Unauthenticated("Session not found")

    now = datetime.utcnow()
    if session.is_expired(now):
        await db.delete(session)
        await db.commit()
        logger.info("Expired session removed on access (user %s)", session.user_id)
        raise Unauthenticated("Session expired", {"expired": True})

    session.last_used_at = now
    await db.flush()
    return session


async def refresh_session(db: AsyncSession, token: Optional[str]) -> Session:
    """Extend a valid session to now + TTL."""
    session = await validate_session(db, token)
    now = datetime.utcnow()
    session.expires_at = now + session_ttl()
    session.last_used_at = now
    await db.flush()
    return session


async def destroy_session(db: AsyncSession, token: str) -> bool:
    """Delete a session. Deleting an unknown token is not an error."""
    result = await db.execute(delete(Session).where(Session.token == token))
    return result.rowcount > 0


async def destroy_user_sessions(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(delete(Session).where(Session.user_id == user_id))
    return result.rowcount


async def sweep_expired(db: AsyncSession) -> int:
    """Delete every session whose expiry has passed. Returns the row count."""
    now = datetime.utcnow()
    result = await db.execute(
        delete(Session).where(Session.expires_at.is_not(None), Session.expires_at < now)
    )
    return result.rowcount
