"""Saved clinical cases."""

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from mozarela.database import Base


class Case(Base):
    """A case the user submitted, with the diagnosis it produced.

    Ownership is checked by the case service; the foreign key only keeps
    orphaned rows out of the table.
    """

    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)  # epoch ms

    data: Mapped[dict] = mapped_column(JSON, default=dict)        # patient + clinical input
    results: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # DiagnosisResponse
