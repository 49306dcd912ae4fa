"""JSON export and best-effort import of users and cases."""

import logging
import uuid
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mozarela.api.cases import get_case, now_ms
from mozarela.api.users import create_user, get_user, get_user_by_email, normalize_email
from mozarela.exceptions import AppError, ValidationFailed
from mozarela.models.case import Case
from mozarela.models.user import User
from mozarela.schemas.backup import CaseImport, UserImport
from mozarela.schemas.base import CamelModel
from mozarela.schemas.case import CaseResponse
from mozarela.schemas.user import UserResponse

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1


async def export_data(db: AsyncSession) -> dict[str, Any]:
    """Everything needed to rebuild the case history. Password hashes are left out."""
    users = (await db.execute(select(User).order_by(User.email))).scalars().all()
    cases = (await db.execute(select(Case).order_by(Case.timestamp))).scalars().all()
    return {
        "version": BACKUP_VERSION,
        "timestamp": now_ms(),
        "data": {
            "users": [UserResponse.from_user(u).model_dump(by_alias=True) for u in users],
            "cases": [CaseResponse.from_case(c).model_dump(by_alias=True) for c in cases],
        },
    }


def _validate(schema: type[CamelModel], item: dict[str, Any]) -> CamelModel:
    """Parse one backup item; rows that could not be read back are refused."""
    try:
        return schema.model_validate(item)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'item'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationFailed(f"invalid {schema.__name__}: {problems}") from e


async def _import_user(db: AsyncSession, item: dict[str, Any]) -> str:
    record = _validate(UserImport, item)
    user_id = record.id or str(uuid.uuid4())
    email = normalize_email(record.email)
    if not email:
        raise ValidationFailed("user has no email")

    by_email = await get_user_by_email(db, email)
    if by_email is not None and by_email.id != user_id:
        raise ValidationFailed(f"email {email} belongs to another user")

    user = await get_user(db, user_id)
    if user is None:
        if not record.password_hash or not record.full_name:
            raise ValidationFailed("new users need fullName and passwordHash")
        user = await create_user(
            db,
            user_id=user_id,
            email=email,
            password_hash=record.password_hash,
            full_name=record.full_name,
            clinic_name=record.clinic_name,
            is_admin=bool(record.is_admin),
        )
    else:
        user.email = email
        user.full_name = record.full_name or user.full_name
        if "clinic_name" in record.model_fields_set:
            user.clinic_name = record.clinic_name
        if record.is_admin is not None:
            user.is_admin = record.is_admin
        if record.password_hash:
            user.password_hash = record.password_hash

    if "saved_scoring_config" in record.model_fields_set:
        config = record.saved_scoring_config
        user.saved_scoring_config = config.model_dump(by_alias=True) if config else None
    await db.flush()
    return user.id


async def _import_case(db: AsyncSession, item: dict[str, Any]) -> str:
    record = _validate(CaseImport, item)
    if await get_user(db, record.user_id) is None:
        raise ValidationFailed(f"case owner {record.user_id} does not exist")

    case_id = record.id or str(uuid.uuid4())
    case = await get_case(db, case_id)
    if case is None:
        case = Case(id=case_id)
        db.add(case)
    case.user_id = record.user_id
    case.timestamp = record.timestamp or now_ms()
    case.data = record.data or {}
    case.results = record.results
    await db.flush()
    return case.id


async def import_data(db: AsyncSession, backup: Any) -> dict[str, Any]:
    """
    Upsert users then cases from an export document.
    Each item is committed on its own; a failing item is recorded and the
    rest still go in.
    """
    if not isinstance(backup, dict) or not isinstance(backup.get("data"), dict):
        raise ValidationFailed("Invalid backup")

    data = backup["data"]
    imported = {"users": 0, "cases": 0}
    failed: list[dict[str, Any]] = []

    for kind, importer in (("users", _import_user), ("cases", _import_case)):
        items = data.get(kind) or []
        if not isinstance(items, list):
            raise ValidationFailed(f"Invalid backup: {kind} must be a list")
        for item in items:
            item_id = item.get("id") if isinstance(item, dict) else None
            try:
                if not isinstance(item, dict):
                    raise ValidationFailed("item is not an object")
                await importer(db, item)
                await db.commit()
                imported[kind] += 1
            except (AppError, SQLAlchemyError) as e:
                await db.rollback()
                logger.warning("Import of %s %s failed: %s", kind[:-1], item_id, e)
                failed.append({"kind": kind[:-1], "id": item_id, "error": str(e)})

    logger.info("Import finished: %s imported, %d failed", imported, len(failed))
    return {"success": not failed, "imported": imported, "failed": failed}
