"""Shared test fixtures."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import httpx
import pytest

from media_stash.adapters.telegram_client import TelegramClient
from media_stash.adapters.telegram_delivery import TelegramMediaDelivery
from media_stash.config import Settings
from media_stash.containers import AppContainer
from media_stash.domain.carousel import DeliveryTarget
from media_stash.domain.errors import DeliveryFailure, EmptyTagsError
from media_stash.domain.media import MediaDraft, MediaRecord, MediaType
from media_stash.services.cache import InMemoryCache
from media_stash.services.carousel import CarouselService
from media_stash.services.media import MediaRepository, MediaService
from media_stash.services.search import SearchService
from media_stash.services.session_store import SessionStore
from media_stash.services.stats import StatsService

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


def make_record(  # noqa: PLR0913
    *tags: str,
    guild_id: int = 99,
    owner_user_id: int = 123,
    recall_count: int = 0,
    age_minutes: int = 0,
    media_type: MediaType = MediaType.IMAGE,
    media_url: str = "https://example.com/cat.png",
) -> MediaRecord:
    """Build a media record; a larger ``age_minutes`` means older."""
    return MediaRecord(
        id=uuid4(),
        media_url=media_url,
        media_type=media_type,
        tags=tags,
        guild_id=guild_id,
        owner_user_id=owner_user_id,
        recall_count=recall_count,
        created_at=BASE_TIME - timedelta(minutes=age_minutes),
    )


@dataclass
class InMemoryMediaRepository(MediaRepository):
    """In-memory media repository for tests."""

    items: dict[UUID, MediaRecord] = field(default_factory=dict)
    fail_on: set[str] = field(default_factory=set)

    def add(self, *records: MediaRecord) -> list[MediaRecord]:
        for record in records:
            self.items[record.id] = record
        return list(records)

    def find_candidates(
        self, guild_id: int, media_type: MediaType | None = None
    ) -> list[MediaRecord]:
        self._check("find_candidates")
        records = [
            record
            for record in self.items.values()
            if record.guild_id == guild_id
            and record.deleted_at is None
            and (media_type is None or record.media_type == media_type)
        ]
        return sorted(records, key=lambda record: record.created_at, reverse=True)

    def get_media(self, media_id: UUID) -> MediaRecord | None:
        record = self.items.get(media_id)
        if record is None or record.deleted_at is not None:
            return None
        return record

    def create_media(self, draft: MediaDraft) -> MediaRecord:
        self._check("create_media")
        record = MediaRecord(
            id=uuid4(),
            media_url=draft.media_url,
            media_type=draft.media_type,
            tags=draft.tags,
            guild_id=draft.guild_id,
            owner_user_id=draft.owner_user_id,
            recall_count=0,
            created_at=BASE_TIME,
            file_name=draft.file_name,
        )
        self.items[record.id] = record
        return record

    def delete(self, media_id: UUID, requesting_user_id: int, is_privileged: bool) -> bool:
        self._check("delete")
        record = self.get_media(media_id)
        if record is None:
            return False
        if record.owner_user_id != requesting_user_id and not is_privileged:
            return False
        self.items[media_id] = replace(record, deleted_at=BASE_TIME)
        return True

    def update_tags(self, media_id: UUID, new_tags: list[str]) -> MediaRecord | None:
        self._check("update_tags")
        if not new_tags:
            raise EmptyTagsError("Media items must have at least one tag")
        record = self.get_media(media_id)
        if record is None:
            return None
        updated = replace(record, tags=tuple(new_tags))
        self.items[media_id] = updated
        return updated

    def increment_recall_count(self, media_id: UUID) -> None:
        self._check("increment_recall_count")
        record = self.items[media_id]
        self.items[media_id] = replace(record, recall_count=record.recall_count + 1)

    def list_media(self) -> list[MediaRecord]:
        return list(self.items.values())

    def purge_guild(self, guild_id: int) -> int:
        live = [
            record
            for record in self.items.values()
            if record.guild_id == guild_id and record.deleted_at is None
        ]
        for record in live:
            self.items[record.id] = replace(record, deleted_at=BASE_TIME)
        return len(live)

    def _check(self, action: str) -> None:
        if action in self.fail_on:
            raise RuntimeError(f"{action} failed")


@dataclass
class FakeTelegramClient(TelegramClient):
    """Fake Telegram client that records outgoing calls."""

    messages: list[tuple[int, str]] = field(default_factory=list)
    markups: list[dict | None] = field(default_factory=list)
    replies: list[int | None] = field(default_factory=list)
    edits: list[tuple[int, int, str]] = field(default_factory=list)
    edit_markups: list[dict | None] = field(default_factory=list)
    media: list[tuple[int, MediaType, str, int | None]] = field(default_factory=list)
    captions: list[str | None] = field(default_factory=list)
    media_markups: list[dict | None] = field(default_factory=list)
    deleted: list[tuple[int, int]] = field(default_factory=list)
    fail_delete: bool = False
    callbacks: list[tuple[str, str | None]] = field(default_factory=list)
    commands: list[dict[str, str]] | None = None
    last_message_id: int = 1000

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict | None = None,
        reply_to_message_id: int | None = None,
    ) -> int:
        self.messages.append((chat_id, text))
        self.markups.append(reply_markup)
        self.replies.append(reply_to_message_id)
        self.last_message_id += 1
        return self.last_message_id

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: dict | None = None,
    ) -> None:
        self.edits.append((chat_id, message_id, text))
        self.edit_markups.append(reply_markup)

    async def send_media(
        self,
        chat_id: int,
        media_type: MediaType,
        media_url: str,
        caption: str | None = None,
        reply_to_message_id: int | None = None,
        reply_markup: dict | None = None,
    ) -> int:
        self.media.append((chat_id, media_type, media_url, reply_to_message_id))
        self.captions.append(caption)
        self.media_markups.append(reply_markup)
        self.last_message_id += 1
        return self.last_message_id

    async def answer_callback_query(
        self, callback_query_id: str, text: str | None = None
    ) -> None:
        self.callbacks.append((callback_query_id, text))

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        if self.fail_delete:
            request = httpx.Request("POST", "https://api.telegram.org/deleteMessage")
            raise httpx.HTTPStatusError(
                "Bad Request",
                request=request,
                response=httpx.Response(400, request=request),
            )
        self.deleted.append((chat_id, message_id))

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        self.commands = commands


@dataclass
class FakeDelivery:
    """Delivery double that fails with queued errors before succeeding."""

    failures: list[DeliveryFailure] = field(default_factory=list)
    delivered: list[tuple[DeliveryTarget, MediaRecord, bool]] = field(
        default_factory=list
    )

    async def deliver(
        self, target: DeliveryTarget, record: MediaRecord, *, as_link: bool = False
    ) -> None:
        if self.failures:
            raise self.failures.pop(0)
        self.delivered.append((target, record, as_link))


@dataclass
class VirtualTimer:
    due: float
    callback: Callable[[], Awaitable[None]]
    cancelled: bool = False

    def cancel(self) -> bool:
        self.cancelled = True
        return True


@dataclass
class VirtualScheduler:
    """Manually advanced clock for session expiry tests."""

    current: float = 0.0
    timers: list[VirtualTimer] = field(default_factory=list)

    def now(self) -> float:
        return self.current

    def call_later(
        self, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> VirtualTimer:
        timer = VirtualTimer(due=self.current + delay, callback=callback)
        self.timers.append(timer)
        return timer

    async def advance(self, seconds: float) -> None:
        """Move the clock forward and run every timer that came due."""
        self.current += seconds
        due = [t for t in self.timers if not t.cancelled and t.due <= self.current]
        self.timers = [
            t for t in self.timers if not t.cancelled and t.due > self.current
        ]
        for timer in due:
            await timer.callback()

    @property
    def pending(self) -> int:
        return sum(1 for timer in self.timers if not timer.cancelled)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        telegram_bot_token="test-token",
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        telegram_admin_user_ids="777",
    )


@pytest.fixture
def media_repository() -> InMemoryMediaRepository:
    return InMemoryMediaRepository()


@pytest.fixture
def telegram_client() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def session_store(scheduler: VirtualScheduler) -> SessionStore:
    return SessionStore(scheduler=scheduler, ttl_seconds=900)


@pytest.fixture
def delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture
def carousel_service(
    media_repository: InMemoryMediaRepository,
    session_store: SessionStore,
    delivery: FakeDelivery,
) -> CarouselService:
    return CarouselService(
        search_service=SearchService(media_repository),
        repository=media_repository,
        session_store=session_store,
        delivery=delivery,
    )


@pytest.fixture
def container(
    settings: Settings,
    media_repository: InMemoryMediaRepository,
    telegram_client: FakeTelegramClient,
    session_store: SessionStore,
) -> AppContainer:
    carousel_service = CarouselService(
        search_service=SearchService(media_repository),
        repository=media_repository,
        session_store=session_store,
        delivery=TelegramMediaDelivery(telegram_client),
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        telegram_client=telegram_client,
        media_service=MediaService(media_repository),
        carousel_service=carousel_service,
        prompt_cache=InMemoryCache(),
        stats_service=StatsService(media_repository),
        close_resources=close_resources,
    )
