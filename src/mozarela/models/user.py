from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from mozarela.database import Base


class User(Base):
    """A clinician account. ``password_hash`` is the only place the hash lives."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)  # UUID string
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(255))
    clinic_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # {"fileName": ..., "content": ...} of the last protocol CSV the user kept
    saved_scoring_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
