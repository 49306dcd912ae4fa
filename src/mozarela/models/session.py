from datetime import datetime

from sqlalchemy import ForeignKey, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from mozarela.database import Base


class Session(Base):
    """
    An authenticated login.
    The token is the bearer credential; the CSRF token is bound to this row,
    so destroying or rotating the session invalidates it as well.
    """
    __tablename__ = "sessions"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    csrf_token: Mapped[str] = mapped_column(String(64))
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
