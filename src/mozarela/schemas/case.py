from typing import Any, Optional

from pydantic import Field

from mozarela.models.case import Case
from mozarela.schemas.base import CamelModel


class CaseSave(CamelModel):
    """A case as the client saves it. ``id`` and ``timestamp`` are filled in if absent."""

    id: Optional[str] = Field(None, min_length=1, max_length=64)
    timestamp: Optional[int] = None
    data: dict[str, Any] = Field(default_factory=dict)
    results: Optional[dict[str, Any]] = None


class CaseResponse(CamelModel):
    id: str
    user_id: str
    timestamp: int
    data: dict[str, Any]
    results: Optional[dict[str, Any]] = None

    @classmethod
    def from_case(cls, case: Case) -> "CaseResponse":
        return cls(
            id=case.id,
            user_id=case.user_id,
            timestamp=case.timestamp,
            data=case.data or {},
            results=case.results,
        )
