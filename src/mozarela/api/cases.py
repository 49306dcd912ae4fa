"""Case history CRUD. Every operation is scoped to the calling user."""

import time
import uuid
from typing import Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from mozarela.exceptions import Forbidden, NotFound
from mozarela.models.case import Case
from mozarela.schemas.case import CaseSave


def now_ms() -> int:
    return int(time.time() * 1000)


async def get_case(db: AsyncSession, case_id: str) -> Optional[Case]:
    return await db.get(Case, case_id)


async def list_cases(db: AsyncSession, user_id: str) -> list[Case]:
    """The user's cases, newest first."""
    result = await db.execute(
        select(Case).where(Case.user_id == user_id).order_by(desc(Case.timestamp))
    )
    return list(result.scalars().all())


async def save_case(db: AsyncSession, user_id: str, payload: CaseSave) -> Case:
    """
    Insert or replace a case by id.
    Replacing someone else's case is refused; concurrent saves of the same
    id are last-write-wins.
    """
    case_id = payload.id or str(uuid.uuid4())
    timestamp = payload.timestamp or now_ms()

    case = await get_case(db, case_id)
    if case is None:
        case = Case(id=case_id, user_id=user_id)
        db.add(case)
    elif case.user_id != user_id:
        raise Forbidden("You can only modify your own cases")

    case.timestamp = timestamp
    case.data = payload.data
    case.results = payload.results
    await db.flush()
    return case


async def delete_case(db: AsyncSession, user_id: str, case_id: str) -> None:
    case = await get_case(db, case_id)
    if case is None:
        raise NotFound("Case not found")
    if case.user_id != user_id:
        raise Forbidden("You can only delete your own cases")
    await db.delete(case)
    await db.flush()
