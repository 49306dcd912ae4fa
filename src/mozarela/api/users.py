"""User account operations: registration, credential checks, profile updates."""

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mozarela.api.auth import hash_password, verify_password
from mozarela.exceptions import NotFound, StorageFailure, Unauthenticated, ValidationFailed
from mozarela.models.user import User
from mozarela.schemas.user import UserRegister, UserUpdate

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(func.lower(User.email) == normalize_email(email))
    )
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: str) -> User:
    user = await get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def create_user(
    db: AsyncSession,
    *,
    email: str,
    password_hash: str,
    full_name: str,
    clinic_name: Optional[str] = None,
    is_admin: bool = False,
    user_id: Optional[str] = None,
) -> User:
    """Insert a user with an already-hashed password."""
    user = User(
        id=user_id or str(uuid.uuid4()),
        email=normalize_email(email),
        password_hash=password_hash,
        full_name=full_name,
        clinic_name=clinic_name,
        is_admin=is_admin,
    )
    db.add(user)
    await db.flush()
    return user


async def register_user(db: AsyncSession, payload: UserRegister) -> User:
    """Create a non-admin account from a registration form."""
    if not payload.email or not payload.password or not payload.full_name:
        raise ValidationFailed("fullName, email and password required")

    if await get_user_by_email(db, payload.email):
        raise ValidationFailed("Email already registered")

    user = await create_user(
        db,
        email=payload.email,
        password_hash=hash_password(payload.password),
        full_name=payload.full_name.strip(),
        clinic_name=payload.clinic_name,
    )
    logger.info("User registered: %s", user.id)
    return user


async def authenticate(db: AsyncSession, email: Optional[str], password: Optional[str]) -> User:
    """
    Check credentials. Unknown email and wrong password look the same to the
    caller. A stored hash that bcrypt cannot read is a storage fault.
    """
    if not email or not password:
        raise ValidationFailed("email and password required")

    user = await get_user_by_email(db, email)
    if user is None:
        raise Unauthenticated("Invalid credentials")

    if not isinstance(user.password_hash, str) or not user.password_hash:
        logger.error("User %s has no usable password hash", user.id)
        raise StorageFailure("Stored credentials are malformed")
    try:
        ok = verify_password(password, user.password_hash)
    except ValueError as e:
        logger.error("User %s has a malformed password hash: %s", user.id, e)
        raise StorageFailure("Stored credentials are malformed") from e

    if not ok:
        raise Unauthenticated("Invalid credentials")
    return user


async def update_profile(db: AsyncSession, user: User, payload: UserUpdate) -> User:
    """Apply the fields that were sent; re-hash the password if it changed."""
    data = payload.model_dump(exclude_unset=True)

    if "email" in data and data["email"] is not None:
        new_email = normalize_email(data["email"])
        if not new_email:
            raise ValidationFailed("email cannot be empty")
        if new_email != user.email:
            existing = await get_user_by_email(db, new_email)
            if existing and existing.id != user.id:
                raise ValidationFailed("Email already registered")
            user.email = new_email

    if data.get("full_name") is not None:
        user.full_name = data["full_name"].strip()
    if "clinic_name" in data:
        user.clinic_name = data["clinic_name"]
    if "saved_scoring_config" in data:
        config = payload.saved_scoring_config
        user.saved_scoring_config = config.model_dump(by_alias=True) if config else None
    if data.get("password"):
        user.password_hash = hash_password(data["password"])

    await db.flush()
    return user
