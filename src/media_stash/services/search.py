"""Tag-overlap search over stored media."""

from dataclasses import dataclass

from media_stash.domain.media import MediaRecord, MediaType, ScoredResult, SearchQuery
from media_stash.services.media import MediaRepository


@dataclass
class SearchService:
    """Rank a guild's media against a tag query."""

    repository: MediaRepository

    def search(self, query: SearchQuery) -> list[MediaRecord]:
        """Return matching media, best match first.

        Candidates sharing no tag with the query are dropped. The rest are
        ordered by score, then recall count, then recency; Python's stable sort
        keeps the repository order for anything still tied.
        """
        candidates = self.repository.find_candidates(query.guild_id, query.media_type)
        query_tags = set(query.tags)
        scored = [
            ScoredResult(record=record, score=len(query_tags.intersection(record.tags)))
            for record in candidates
        ]
        matches = [result for result in scored if result.score > 0]
        matches.sort(
            key=lambda result: (
                result.score,
                result.record.recall_count,
                result.record.created_at,
            ),
            reverse=True,
        )
        return [result.record for result in matches]

    def top_by_popularity(
        self, guild_id: int, media_type: MediaType | None = None
    ) -> list[MediaRecord]:
        """Return all of a guild's media ordered by recall count then recency."""
        candidates = self.repository.find_candidates(guild_id, media_type)
        return sorted(
            candidates,
            key=lambda record: (record.recall_count, record.created_at),
            reverse=True,
        )
