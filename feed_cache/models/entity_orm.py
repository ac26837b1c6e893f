"""
SQLAlchemy ORM models for entity records.

Each entity (user, post) is split across four tables mirroring the remote index
shape: details, counts, relationships and tags. All share the same bookkeeping
columns so a single table helper can serve them.
"""

from sqlalchemy import BigInteger, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

SYNC_STATUS_LOCAL = "local"
SYNC_STATUS_SYNCED = "synced"


class EntityRecordMixin:
    """
    Attributes:
        id (str): User id, or ``author:post_id`` composite id for posts.
        data (dict | list): The sub-object payload as returned by the remote index.
        sync_status (str): ``local`` for optimistic writes, ``synced`` once confirmed remotely.
        created_at (int): Epoch ms the record was first written.
        sync_ttl (int): Epoch ms after which the record is considered stale.
    """
    id: Mapped[str] = mapped_column(Text, primary_key=True, comment="Entity id.")
    data: Mapped[object] = mapped_column(JSON, nullable=True, comment="Remote payload.")
    sync_status: Mapped[str] = mapped_column(Text, nullable=False, default=SYNC_STATUS_SYNCED, comment="local | synced")
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, comment="Epoch ms of creation.")
    sync_ttl: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, comment="Epoch ms expiry.")

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id='{self.id}', sync_status='{self.sync_status}')>"


class UserDetailsORM(EntityRecordMixin, Base):
    __tablename__ = "user_details"


class UserCountsORM(EntityRecordMixin, Base):
    __tablename__ = "user_counts"


class UserRelationshipsORM(EntityRecordMixin, Base):
    __tablename__ = "user_relationships"


class UserTagsORM(EntityRecordMixin, Base):
    __tablename__ = "user_tags"


class PostDetailsORM(EntityRecordMixin, Base):
    __tablename__ = "post_details"


class PostCountsORM(EntityRecordMixin, Base):
    __tablename__ = "post_counts"


class PostRelationshipsORM(EntityRecordMixin, Base):
    __tablename__ = "post_relationships"


class PostTagsORM(EntityRecordMixin, Base):
    __tablename__ = "post_tags"
