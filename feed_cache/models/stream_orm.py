"""
SQLAlchemy ORM models for the ordered stream tables ('stream_posts', 'stream_users').
"""

from sqlalchemy import BigInteger, Boolean, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class StreamRecordMixin:
    """
    Columns shared by every stream table.

    Attributes:
        id (str): Stream identifier, a colon-joined tuple such as
                  ``timeline:all:all`` or ``<user_id>:followers``.
        stream (list[str]): Ordered composite ids, no duplicates.
        reached_end (bool): The remote index confirmed there is nothing past ``stream``.
        updated_at (int): Epoch milliseconds of the last write.
    """
    id: Mapped[str] = mapped_column(Text, primary_key=True, comment="Stream identifier.")
    stream: Mapped[list] = mapped_column(JSON, nullable=False, default=list, comment="Ordered composite ids.")
    reached_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, comment="Remote has no items past this list.")
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, comment="Epoch ms of last write.")

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id='{self.id}', size={len(self.stream or [])}, reached_end={self.reached_end})>"


class PostStreamORM(StreamRecordMixin, Base):
    __tablename__ = "stream_posts"


class UserStreamORM(StreamRecordMixin, Base):
    __tablename__ = "stream_users"
