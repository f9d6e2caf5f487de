"""Domain models for stored media."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class MediaType(str, Enum):
    """Kinds of media the stash can hold."""

    IMAGE = "image"
    GIF = "gif"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaRecord:
    """Represents a stored media item."""

    id: UUID
    media_url: str
    media_type: MediaType
    tags: tuple[str, ...]
    guild_id: int
    owner_user_id: int
    recall_count: int
    created_at: datetime
    file_name: str | None = None
    thumbnail_url: str | None = None
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class MediaDraft:
    """Data needed to store a new media item."""

    media_url: str
    media_type: MediaType
    tags: tuple[str, ...]
    guild_id: int
    owner_user_id: int
    file_name: str | None = None
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class SearchQuery:
    """Tag search scoped to one guild."""

    guild_id: int
    tags: tuple[str, ...]
    media_type: MediaType | None = None

    def __post_init__(self) -> None:
        if not self.tags:
            raise ValueError("SearchQuery requires at least one tag")


@dataclass(frozen=True)
class ScoredResult:
    """A candidate paired with its tag-overlap score."""

    record: MediaRecord
    score: int


@dataclass(frozen=True)
class MediaStats:
    """Usage totals across every chat."""

    active_count: int
    deleted_count: int
    total_recalls: int
    top_tags: tuple[tuple[str, int], ...]
    top_guilds: tuple[tuple[int, int], ...]
