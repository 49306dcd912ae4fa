"""Admin operations. Callers must already have passed the admin gate."""

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import delete, desc, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession

from mozarela.api import sessions as session_store
from mozarela.api.cases import get_case
from mozarela.api.users import require_user
from mozarela.config import settings
from mozarela.exceptions import NotFound, ValidationFailed
from mozarela.models.case import Case
from mozarela.models.session import Session
from mozarela.models.user import User
from mozarela.schemas.case import CaseResponse
from mozarela.schemas.user import UserResponse

logger = logging.getLogger(__name__)

_RECENT_LIMIT = 10


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def get_stats(db: AsyncSession) -> dict[str, Any]:
    """Row totals plus the most recent users and cases."""
    recent_cases = await db.execute(
        select(Case).order_by(desc(Case.timestamp)).limit(_RECENT_LIMIT)
    )
    recent_users = await db.execute(
        select(User).order_by(desc(User.created_at)).limit(_RECENT_LIMIT)
    )
    return {
        "users": {
            "total": await _count(db, User),
            "recent": [
                UserResponse.from_user(u).model_dump(by_alias=True, exclude={"saved_scoring_config"})
                for u in recent_users.scalars()
            ],
        },
        "cases": {
            "total": await _count(db, Case),
            "recent": [
                {"id": c.id, "timestamp": c.timestamp, "preview": c.data or {}}
                for c in recent_cases.scalars()
            ],
        },
        "sessions": {"total": await _count(db, Session)},
    }


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.email))
    return list(result.scalars().all())


async def list_all_cases(db: AsyncSession) -> list[dict[str, Any]]:
    """Every case joined with its owner's email and name."""
    result = await db.execute(
        select(Case, User.email, User.full_name)
        .join(User, User.id == Case.user_id, isouter=True)
        .order_by(desc(Case.timestamp))
    )
    rows = []
    for case, email, full_name in result.all():
        data = case.data or {}
        rows.append({
            **CaseResponse.from_case(case).model_dump(by_alias=True),
            "userEmail": email,
            "userFullName": full_name,
            "analysisMode": data.get("analysisMode", "Unknown"),
            "patientName": data.get("patientName"),
            "species": data.get("species"),
        })
    return rows


async def delete_user(db: AsyncSession, acting_user_id: str, user_id: str) -> None:
    """Delete a user together with their sessions and cases."""
    if acting_user_id == user_id:
        raise ValidationFailed("Cannot delete your own account")

    user = await require_user(db, user_id)
    removed_sessions = await session_store.destroy_user_sessions(db, user_id)
    removed_cases = (await db.execute(delete(Case).where(Case.user_id == user_id))).rowcount
    await db.delete(user)
    await db.flush()
    logger.info(
        "Admin %s deleted user %s (%d sessions, %d cases)",
        acting_user_id, user_id, removed_sessions, removed_cases,
    )


async def delete_any_case(db: AsyncSession, case_id: str) -> None:
    case = await get_case(db, case_id)
    if case is None:
        raise NotFound("Case not found")
    await db.delete(case)
    await db.flush()


async def toggle_admin(db: AsyncSession, acting_user_id: str, user_id: str) -> bool:
    """Flip a user's admin flag and return the new value."""
    if acting_user_id == user_id:
        raise ValidationFailed("Cannot modify your own admin status")

    user = await require_user(db, user_id)
    user.is_admin = not user.is_admin
    await db.flush()
    logger.info("Admin %s set is_admin=%s on user %s", acting_user_id, user.is_admin, user_id)
    return user.is_admin


def sqlite_database_file() -> Path:
    """Path of the SQLite file behind ``database_url``."""
    url = make_url(settings.database_url)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        raise ValidationFailed("Backup download is only available for SQLite file databases")
    path = Path(url.database)
    if not path.exists():
        raise NotFound("Database file not found")
    return path
