from datetime import datetime

from mozarela.models.session import Session
from mozarela.schemas.base import CamelModel


class SessionResponse(CamelModel):
    token: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            token=session.token,
            user_id=session.user_id,
            created_at=session.created_at,
            expires_at=session.expires_at,
            last_used_at=session.last_used_at,
        )


class RefreshResponse(CamelModel):
    success: bool = True
    expires_at: datetime
