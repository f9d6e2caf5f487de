"""Domain models for result carousels."""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from media_stash.domain.media import MediaRecord


class CarouselMode(str, Enum):
    """Which command opened the carousel."""

    RECALL = "recall"
    DELETE = "delete"
    TOP = "top"


class CarouselAction(str, Enum):
    """Actions a carousel control can carry."""

    PREV = "prev"
    NEXT = "next"
    SEND = "send"
    CONFIRM_DELETE = "confirm_delete"
    EDIT = "edit"


class CarouselStatus(str, Enum):
    """Outcome of a carousel interaction."""

    ACTIVE = "active"
    UPDATED = "updated"
    EXHAUSTED = "exhausted"
    SENT = "sent"
    SEND_FAILED = "send_failed"


@dataclass(frozen=True)
class ActionToken:
    """Mode, action and item id carried by a carousel control."""

    mode: CarouselMode
    action: CarouselAction
    item_id: UUID


@dataclass(frozen=True)
class Actor:
    """The user acting on a carousel."""

    user_id: int
    is_privileged: bool = False


@dataclass(frozen=True)
class DeliveryTarget:
    """Where a sent item should be posted."""

    chat_id: int
    reply_to_message_id: int | None = None
    sender_id: int | None = None
    sender_name: str | None = None


@dataclass(frozen=True)
class TagDiff:
    """Tags added and removed by an edit."""

    added: tuple[str, ...]
    removed: tuple[str, ...]

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


@dataclass(frozen=True)
class CarouselView:
    """Render-ready state returned after every interaction."""

    status: CarouselStatus
    mode: CarouselMode
    item: MediaRecord | None = None
    index: int | None = None
    total: int = 0
    notice: str | None = None
    tag_diff: TagDiff | None = None

    @property
    def position(self) -> int | None:
        """One-based position for display."""
        return None if self.index is None else self.index + 1
