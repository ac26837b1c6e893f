"""
SQLAlchemy ORM model for the 'hot_tags' snapshot table.
"""

from sqlalchemy import BigInteger, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class HotTagsORM(Base):
    """
    Hot tag leaderboard snapshot.

    Attributes:
        id (str): ``<timeframe>:<reach>``, e.g. ``today:all``.
        tags (list[dict]): Ordered ``{label, tagged_count, taggers_count, taggers_id}`` entries.
        updated_at (int): Epoch ms of the last write.
    """
    __tablename__ = "hot_tags"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<HotTagsORM(id='{self.id}', size={len(self.tags or [])})>"
