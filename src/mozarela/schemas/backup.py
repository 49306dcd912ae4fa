"""Shapes accepted by the JSON import. Same camelCase keys as the export."""

from typing import Any, Optional

from pydantic import Field

from mozarela.schemas.base import CamelModel
from mozarela.schemas.user import ScoringConfig


class UserImport(CamelModel):
    id: Optional[str] = Field(None, min_length=1, max_length=36)
    email: str = Field(..., min_length=1, max_length=255)
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    clinic_name: Optional[str] = None
    is_admin: Optional[bool] = None
    password_hash: Optional[str] = None
    saved_scoring_config: Optional[ScoringConfig] = None


class CaseImport(CamelModel):
    id: Optional[str] = Field(None, min_length=1, max_length=64)
    user_id: str = Field(..., min_length=1)
    timestamp: Optional[int] = None
    data: Optional[dict[str, Any]] = None
    results: Optional[dict[str, Any]] = None
