"""
Models package for the feed cache.

This package contains SQLAlchemy ORM models and Pydantic DTOs.
"""

# Ensure all ORM models are registered with the Base metadata when this package is imported.
from . import base
from . import entity_orm
from . import hot_tag_orm
from . import notification_orm
from . import stream_orm

from .base import Base
from .entity_orm import (
    PostCountsORM,
    PostDetailsORM,
    PostRelationshipsORM,
    PostTagsORM,
    SYNC_STATUS_LOCAL,
    SYNC_STATUS_SYNCED,
    UserCountsORM,
    UserDetailsORM,
    UserRelationshipsORM,
    UserTagsORM,
)
from .hot_tag_orm import HotTagsORM
from .notification_orm import NotificationMetaORM, NotificationORM
from .stream_orm import PostStreamORM, UserStreamORM

from .dtos import (
    BookmarkDTO,
    HotTagDTO,
    NotificationDTO,
    NotificationsPage,
    PostCountsDTO,
    PostDetailsDTO,
    PostDTO,
    PostKeysPage,
    PostRelationshipsDTO,
    PostStreamPage,
    StreamSlice,
    TagDTO,
    UserCountsDTO,
    UserDetailsDTO,
    UserDTO,
    UserRelationshipDTO,
    UserStreamPage,
    UserView,
)

__all__ = [
    # Base
    "Base",
    # ORMs
    "HotTagsORM",
    "NotificationMetaORM",
    "NotificationORM",
    "PostCountsORM",
    "PostDetailsORM",
    "PostRelationshipsORM",
    "PostStreamORM",
    "PostTagsORM",
    "UserCountsORM",
    "UserDetailsORM",
    "UserRelationshipsORM",
    "UserStreamORM",
    "UserTagsORM",
    "SYNC_STATUS_LOCAL",
    "SYNC_STATUS_SYNCED",
    # DTOs
    "BookmarkDTO",
    "HotTagDTO",
    "NotificationDTO",
    "NotificationsPage",
    "PostCountsDTO",
    "PostDetailsDTO",
    "PostDTO",
    "PostKeysPage",
    "PostRelationshipsDTO",
    "PostStreamPage",
    "StreamSlice",
    "TagDTO",
    "UserCountsDTO",
    "UserDetailsDTO",
    "UserDTO",
    "UserRelationshipDTO",
    "UserStreamPage",
    "UserView",
]
