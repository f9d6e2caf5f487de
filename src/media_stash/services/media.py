"""Services for storing media items."""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from media_stash.domain.carousel import Actor
from media_stash.domain.errors import ValidationFailed
from media_stash.domain.media import MediaDraft, MediaRecord, MediaType
from media_stash.services.tags import parse_tag_input

_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")
_GIF_EXTENSION = ".gif"
_VIDEO_EXTENSIONS = (".mp4", ".mov", ".webm")


class MediaRepository(Protocol):
    """Persistence interface for media items."""

    def find_candidates(
        self, guild_id: int, media_type: MediaType | None = None
    ) -> list[MediaRecord]:
        """Return all non-deleted media for a guild."""

    def delete(self, media_id: UUID, requesting_user_id: int, is_privileged: bool) -> bool:
        """Tombstone a media item; false when missing or not allowed."""

    def update_tags(self, media_id: UUID, new_tags: list[str]) -> MediaRecord | None:
        """Replace the tags of a media item and return it, if present."""

    def increment_recall_count(self, media_id: UUID) -> None:
        """Increment the recall counter of a media item."""

    def create_media(self, draft: MediaDraft) -> MediaRecord:
        """Create a media item and return it."""

    def get_media(self, media_id: UUID) -> MediaRecord | None:
        """Return a non-deleted media item by id, if present."""

    def list_media(self) -> list[MediaRecord]:
        """Return every media item, deleted ones included."""

    def purge_guild(self, guild_id: int) -> int:
        """Tombstone all live media of a guild and return how many."""


@dataclass
class MediaService:
    """Application service for saving media."""

    repository: MediaRepository

    def store(  # noqa: PLR0913
        self,
        guild_id: int,
        owner_user_id: int,
        media_url: str,
        tags_text: str,
        media_type: MediaType | None = None,
        file_name: str | None = None,
    ) -> MediaRecord:
        """Validate input and store a media item."""
        resolved_type = media_type or media_type_from_url(media_url)
        if resolved_type is None:
            raise ValidationFailed("Invalid URL. Must be an image, GIF, or video.")
        tags = parse_tag_input(tags_text)
        if not tags:
            raise ValidationFailed()
        return self.repository.create_media(
            MediaDraft(
                media_url=media_url,
                media_type=resolved_type,
                tags=tuple(tags),
                guild_id=guild_id,
                owner_user_id=owner_user_id,
                file_name=file_name,
            )
        )


def media_type_from_url(url: str) -> MediaType | None:
    """Guess the media type from well-known hosts and file extensions."""
    lowered = url.lower()
    if "tenor.com/view/" in lowered or "giphy.com/gifs/" in lowered:
        return MediaType.GIF
    if any(ext in lowered for ext in _IMAGE_EXTENSIONS):
        return MediaType.IMAGE
    if _GIF_EXTENSION in lowered:
        return MediaType.GIF
    if any(ext in lowered for ext in _VIDEO_EXTENSIONS):
        return MediaType.VIDEO
    return None


def can_delete(record: MediaRecord, actor: Actor) -> bool:
    """Owners and privileged users may delete an item."""
    return actor.is_privileged or record.owner_user_id == actor.user_id


def is_remote_url(value: str) -> bool:
    """Tell web links apart from Telegram file ids."""
    return value.lower().startswith(("http://", "https://"))
