"""
SQLAlchemy ORM models for the 'notifications' and 'notifications_meta' tables.
"""

from sqlalchemy import BigInteger, Index, Integer, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class NotificationORM(Base):
    """
    A single notification as received from the remote index.

    Attributes:
        id (str): ``<user_id>:<timestamp>:<body digest>``.
        user_id (str): Recipient.
        timestamp (int): Epoch ms; pagination key.
        body (dict): The notification body (type plus type-specific fields).
    """
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, comment="Recipient user id.")
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Epoch ms.")
    body: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict, comment="Notification body.")

    __table_args__ = (
        Index("idx_notifications_user_timestamp", "user_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<NotificationORM(user_id='{self.user_id}', timestamp={self.timestamp})>"


class NotificationMetaORM(Base):
    """
    Unread tracking watermark per user.

    Attributes:
        user_id (str): Primary key.
        last_read (int): Epoch ms; items with a strictly greater timestamp are unread.
        unread_count (int): Last computed unread count.
    """
    __tablename__ = "notifications_meta"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    last_read: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, comment="Epoch ms watermark.")
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<NotificationMetaORM(user_id='{self.user_id}', last_read={self.last_read}, unread={self.unread_count})>"
