"""Owner statistics and maintenance over all stored media."""

import logging
from collections import Counter
from dataclasses import dataclass

from media_stash.domain.media import MediaStats
from media_stash.services.media import MediaRepository

TOP_LIMIT = 10

_logger = logging.getLogger(__name__)


@dataclass
class StatsService:
    """Service for bot-wide usage numbers and guild purges."""

    repository: MediaRepository

    def collect(self) -> MediaStats:
        """Return totals over every chat."""
        records = self.repository.list_media()
        active = [record for record in records if record.deleted_at is None]
        tag_counts: Counter[str] = Counter()
        for record in active:
            tag_counts.update(record.tags)
        guild_counts = Counter(record.guild_id for record in active)
        return MediaStats(
            active_count=len(active),
            deleted_count=len(records) - len(active),
            total_recalls=sum(record.recall_count for record in active),
            top_tags=tuple(tag_counts.most_common(TOP_LIMIT)),
            top_guilds=tuple(guild_counts.most_common(TOP_LIMIT)),
        )

    def purge_guild(self, guild_id: int) -> int:
        """Tombstone every live item of a guild."""
        count = self.repository.purge_guild(guild_id)
        _logger.info("Purged guild: guild=%s count=%s", guild_id, count)
        return count

