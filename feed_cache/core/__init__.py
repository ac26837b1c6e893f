"""
Core components of the feed cache: the stream sync engine and the orchestrators
built on top of it.
"""

from .background import BackgroundTaskRunner
from .batch_queue import BatchQueue
from .cancellation import CancellationToken
from .follows import LocalFollowService
from .hot_tags import HotTagsService
from .notifications import NotificationService
from .persistence import LocalPersistenceService
from .pollers import NotificationPoller, StreamPoller, TtlRefreshPoller
from .post_streams import PostStreamService
from .posts import LocalPostService
from .stream_sync import StreamSyncEngine
from .user_streams import UserStreamService

__all__ = [
    "BackgroundTaskRunner",
    "BatchQueue",
    "CancellationToken",
    "HotTagsService",
    "LocalFollowService",
    "LocalPersistenceService",
    "LocalPostService",
    "NotificationPoller",
    "NotificationService",
    "PostStreamService",
    "StreamPoller",
    "StreamSyncEngine",
    "TtlRefreshPoller",
    "UserStreamService",
]
