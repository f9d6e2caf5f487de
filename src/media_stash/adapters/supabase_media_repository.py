"""Supabase implementation for stored media."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from media_stash.domain.errors import EmptyTagsError
from media_stash.domain.media import MediaDraft, MediaRecord, MediaType
from media_stash.services.media import MediaRepository
from media_stash.services.tags import MAX_TAGS_PER_ITEM


@dataclass
class SupabaseMediaRepository(MediaRepository):
    """Supabase-backed repository for media items.

    Deletes are soft: rows get a ``deleted_at`` timestamp and are excluded
    from every read.
    """

    client: Client
    table_name: str = "media"

    def find_candidates(
        self, guild_id: int, media_type: MediaType | None = None
    ) -> list[MediaRecord]:
        """Return all non-deleted media for a guild, newest first."""
        query = (
            self.client.table(self.table_name)
            .select("*")
            .eq("guild_id", guild_id)
            .is_("deleted_at", "null")
        )
        if media_type is not None:
            query = query.eq("media_type", media_type.value)
        response = query.order("created_at", desc=True).execute()
        return [_parse_media(row) for row in response.data or []]

    def get_media(self, media_id: UUID) -> MediaRecord | None:
        """Return a non-deleted media item by id, if present."""
        response = (
            self.client.table(self.table_name)
            .select("*")
            .eq("id", str(media_id))
            .is_("deleted_at", "null")
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_media(response.data[0])

    def create_media(self, draft: MediaDraft) -> MediaRecord:
        """Create a media row and return it."""
        if not draft.tags:
            raise EmptyTagsError("Media items must have at least one tag")
        response = (
            self.client.table(self.table_name)
            .insert(
                {
                    "media_url": draft.media_url,
                    "media_type": draft.media_type.value,
                    "tags": list(draft.tags[:MAX_TAGS_PER_ITEM]),
                    "guild_id": draft.guild_id,
                    "user_id": draft.owner_user_id,
                    "file_name": draft.file_name,
                    "thumbnail_url": draft.thumbnail_url,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create media entry")
        return _parse_media(response.data[0])

    def delete(self, media_id: UUID, requesting_user_id: int, is_privileged: bool) -> bool:
        """Tombstone a media item if the requester owns it or is privileged."""
        media = self.get_media(media_id)
        if media is None:
            return False
        if media.owner_user_id != requesting_user_id and not is_privileged:
            return False
        response = (
            self.client.table(self.table_name)
            .update({"deleted_at": datetime.now(tz=UTC).isoformat()})
            .eq("id", str(media_id))
            .execute()
        )
        return bool(response.data)

    def update_tags(self, media_id: UUID, new_tags: list[str]) -> MediaRecord | None:
        """Replace tags on a media item and return the updated row."""
        if not new_tags:
            raise EmptyTagsError("Media items must have at least one tag")
        if self.get_media(media_id) is None:
            return None
        response = (
            self.client.table(self.table_name)
            .update({"tags": new_tags[:MAX_TAGS_PER_ITEM]})
            .eq("id", str(media_id))
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to update media tags")
        return _parse_media(response.data[0])

    def increment_recall_count(self, media_id: UUID) -> None:
        """Atomically increment the recall counter in the database."""
        self.client.rpc(
            "increment_recall_count", {"media_id": str(media_id)}
        ).execute()

    def list_media(self) -> list[MediaRecord]:
        """Return every media row, deleted ones included."""
        response = self.client.table(self.table_name).select("*").execute()
        return [_parse_media(row) for row in response.data or []]

    def purge_guild(self, guild_id: int) -> int:
        """Tombstone all live media of a guild and return how many."""
        response = (
            self.client.table(self.table_name)
            .update({"deleted_at": datetime.now(tz=UTC).isoformat()})
            .eq("guild_id", guild_id)
            .is_("deleted_at", "null")
            .execute()
        )
        return len(response.data or [])


def _parse_media(row: dict[str, object]) -> MediaRecord:
    """Parse a media row into a domain model."""
    deleted_raw = row.get("deleted_at")
    return MediaRecord(
        id=UUID(str(row["id"])),
        media_url=str(row["media_url"]),
        media_type=MediaType(str(row["media_type"])),
        tags=tuple(str(tag) for tag in row.get("tags") or []),
        guild_id=int(row["guild_id"]),
        owner_user_id=int(row["user_id"]),
        recall_count=int(row.get("recall_count") or 0),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        file_name=row.get("file_name"),
        thumbnail_url=row.get("thumbnail_url"),
        deleted_at=(
            datetime.fromisoformat(deleted_raw)
            if isinstance(deleted_raw, str) and deleted_raw
            else None
        ),
    )
