"""Schemas for accounts and authentication."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from mozarela.models.user import User
from mozarela.schemas.base import CamelModel


class ScoringConfig(CamelModel):
    """A protocol CSV the user keeps on their profile."""

    file_name: str = Field(..., min_length=1, max_length=255)
    content: str


class UserRegister(CamelModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    clinic_name: Optional[str] = None


class UserLogin(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserUpdate(CamelModel):
    """Profile update; omitted fields are left unchanged."""

    email: Optional[str] = None
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    clinic_name: Optional[str] = None
    password: Optional[str] = Field(None, min_length=1)
    saved_scoring_config: Optional[ScoringConfig] = None


class UserResponse(CamelModel):
    """Sanitized user record. Never carries the password hash."""

    id: str
    email: str
    full_name: str
    clinic_name: Optional[str] = None
    is_admin: bool = False
    saved_scoring_config: Optional[ScoringConfig] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            clinic_name=user.clinic_name,
            is_admin=bool(user.is_admin),
            saved_scoring_config=user.saved_scoring_config,
        )


class AuthResponse(CamelModel):
    token: str
    csrf_token: str
    expires_at: datetime
    user: UserResponse
