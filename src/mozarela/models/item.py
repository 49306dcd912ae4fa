from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from mozarela.database import Base


class Item(Base):
    """Legacy name-only table kept for older clients."""

    __tablename__ = "items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
