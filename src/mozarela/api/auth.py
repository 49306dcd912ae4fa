"""Request authentication: session resolution, CSRF guard and admin gate.

The dependencies chain as session -> CSRF -> admin, with the admin rate
limit checked before the session lookup. The resolved session is passed
explicitly to each handler.
"""

import hmac
import logging
from typing import Optional

import bcrypt
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mozarela.api import sessions as session_store
from mozarela.api.ratelimit import limit_admin
from mozarela.config import settings
from mozarela.database import get_db
from mozarela.exceptions import Forbidden
from mozarela.models.session import Session
from mozarela.models.user import User

logger = logging.getLogger(__name__)

CSRF_HEADERS = ("x-csrf-token", "x-xsrf-token")


# ============================================================================
# Passwords
# ============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Raises ValueError when the stored hash is not a bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


# ============================================================================
# Session resolution
# ============================================================================

def resolve_session_token(request: Request) -> Optional[str]:
    """
    Pick the session token for a request.
    Bearer header, then the session cookie, then X-Session-Token; the first
    one present wins and the others are not consulted.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None

    cookie = request.cookies.get(settings.session_cookie_name)
    if cookie:
        return cookie

    return request.headers.get("X-Session-Token") or None


async def get_current_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Session:
    """Dependency: a valid, touched session or Unauthenticated."""
    token = resolve_session_token(request)
    return await session_store.validate_session(db, token)


# ============================================================================
# CSRF guard
# ============================================================================

def check_csrf(session: Session, header_value: Optional[str]) -> None:
    """Raise Forbidden unless the header matches the session's CSRF token exactly."""
    if not header_value:
        logger.warning("CSRF check failed: header missing (user %s)", session.user_id)
        raise Forbidden("Missing CSRF token")

    expected = session.csrf_token or ""
    if not expected or not hmac.compare_digest(header_value.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("CSRF check failed: token mismatch (user %s)", session.user_id)
        raise Forbidden("Invalid CSRF token")


async def require_csrf(
    request: Request,
    session: Session = Depends(get_current_session),
) -> Session:
    """Dependency for state-mutating routes."""
    header_value = None
    for name in CSRF_HEADERS:
        header_value = request.headers.get(name)
        if header_value:
            break
    check_csrf(session, header_value)
    return session


# ============================================================================
# Admin gate
# ============================================================================

async def ensure_admin(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None or not user.is_admin:
        raise Forbidden("Admin access required")
    return user


async def require_admin(
    _: None = Depends(limit_admin),
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> Session:
    """Dependency for read-only admin routes."""
    await ensure_admin(db, session.user_id)
    return session


async def require_admin_csrf(
    _: None = Depends(limit_admin),
    session: Session = Depends(require_csrf),
    db: AsyncSession = Depends(get_db),
) -> Session:
    """Dependency for mutating admin routes: session, then CSRF, then admin."""
    await ensure_admin(db, session.user_id)
    return session
