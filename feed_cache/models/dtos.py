"""
Pydantic Data Transfer Objects (DTOs) for the feed cache.

Remote index payloads are validated into these models immediately after each
HTTP call, so the rest of the package never inspects raw JSON.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TagDTO(BaseModel):
    """A tag attached to a post or user, as seen by the viewer."""
    label: str
    taggers: List[str] = Field(default_factory=list)
    taggers_count: int = 0
    relationship: bool = False  # the viewer is one of the taggers

    model_config = {"extra": "allow"}


# --- Users -----------------------------------------------------------------

class UserDetailsDTO(BaseModel):
    id: str
    name: str = ""
    bio: Optional[str] = None
    image: Optional[str] = None
    status: Optional[str] = None
    links: Optional[List[Dict[str, Any]]] = None
    indexed_at: int = 0

    model_config = {"extra": "allow", "from_attributes": True}


class UserCountsDTO(BaseModel):
    tagged: int = 0
    tags: int = 0
    unique_tags: int = 0
    posts: int = 0
    replies: int = 0
    following: int = 0
    followers: int = 0
    friends: int = 0
    bookmarks: int = 0

    model_config = {"extra": "allow"}


class UserRelationshipDTO(BaseModel):
    """Relationship of a user relative to the viewer that issued the query."""
    following: bool = False
    followed_by: bool = False
    muted: bool = False

    model_config = {"extra": "allow"}


class UserDTO(BaseModel):
    """A full user record from the remote index."""
    details: UserDetailsDTO
    counts: UserCountsDTO = Field(default_factory=UserCountsDTO)
    relationship: UserRelationshipDTO = Field(default_factory=UserRelationshipDTO)
    tags: List[TagDTO] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.details.id


class UserView(BaseModel):
    """A hydrated user as returned to stream consumers."""
    id: str
    details: UserDetailsDTO
    counts: Optional[UserCountsDTO] = None
    tags: List[TagDTO] = Field(default_factory=list)
    is_following: bool = False


# --- Posts -----------------------------------------------------------------

class PostDetailsDTO(BaseModel):
    id: str
    author: str
    content: str = ""
    kind: str = "short"
    uri: Optional[str] = None
    attachments: Optional[List[str]] = None
    indexed_at: int = 0

    model_config = {"extra": "allow", "from_attributes": True}


class PostCountsDTO(BaseModel):
    tags: int = 0
    unique_tags: int = 0
    replies: int = 0
    reposts: int = 0

    model_config = {"extra": "allow"}


class PostRelationshipsDTO(BaseModel):
    """Links from this post to other posts (parent reply, reposted post) and mentions."""
    replied: Optional[str] = None
    reposted: Optional[str] = None
    mentioned: List[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class BookmarkDTO(BaseModel):
    id: str
    indexed_at: int = 0


class PostDTO(BaseModel):
    """A full post record from the remote index."""
    details: PostDetailsDTO
    counts: PostCountsDTO = Field(default_factory=PostCountsDTO)
    relationships: PostRelationshipsDTO = Field(default_factory=PostRelationshipsDTO)
    tags: List[TagDTO] = Field(default_factory=list)
    bookmark: Optional[BookmarkDTO] = None


class PostKeysPage(BaseModel):
    """Result of a post key stream query."""
    post_keys: List[str] = Field(default_factory=list)
    last_post_score: Optional[float] = None


# --- Hot tags & notifications ----------------------------------------------

class HotTagDTO(BaseModel):
    label: str
    tagged_count: int = 0
    taggers_count: int = 0
    taggers_id: List[str] = Field(default_factory=list)


class NotificationDTO(BaseModel):
    """A notification; ``body`` carries ``type`` plus type-specific fields."""
    timestamp: int
    body: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"from_attributes": True}


# --- Results ---------------------------------------------------------------

class StreamSlice(BaseModel):
    """
    One page of a stream.

    ``next_cursor`` is the skip value for the following page, or ``None`` when the
    stream has no more items.
    """
    page_ids: List[str] = Field(default_factory=list)
    next_cursor: Optional[int] = None
    from_cache: bool = False

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


class UserStreamPage(BaseModel):
    users: List[UserView] = Field(default_factory=list)
    next_cursor: Optional[int] = None


class PostStreamPage(BaseModel):
    post_ids: List[str] = Field(default_factory=list)
    posts: List[PostDTO] = Field(default_factory=list)
    next_cursor: Optional[int] = None


class NotificationsPage(BaseModel):
    """``older_than`` is the timestamp to pass for the next page, ``None`` at the end."""
    notifications: List[NotificationDTO] = Field(default_factory=list)
    older_than: Optional[int] = None
