"""TTL-scoped storage for carousel result lists."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Protocol
from uuid import UUID

from media_stash.domain.carousel import CarouselMode
from media_stash.domain.media import MediaRecord

SESSION_TTL_SECONDS = 15 * 60

_logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle for a scheduled callback."""

    def cancel(self) -> object:
        """Cancel the callback if it has not run yet."""


class Scheduler(Protocol):
    """Clock plus relative timers."""

    def now(self) -> float:
        """Return the current time in seconds."""

    def call_later(
        self, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds."""


@dataclass
class AsyncioScheduler:
    """Scheduler backed by the running event loop."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(
        self, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> TimerHandle:
        async def _run() -> None:
            await asyncio.sleep(delay)
            await callback()

        return asyncio.get_running_loop().create_task(_run())


@dataclass(frozen=True)
class Session:
    """Snapshot of a stored result list."""

    key: str
    records: tuple[MediaRecord, ...]
    created_at: float
    expires_at: float


@dataclass(frozen=True)
class ItemRemoval:
    """Result of removing one item from a session."""

    index: int
    remaining: tuple[MediaRecord, ...]

    @property
    def remaining_count(self) -> int:
        return len(self.remaining)


@dataclass
class _Entry:
    session: Session
    generation: int
    timer: TimerHandle | None = None


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def session_key(mode: CarouselMode, scope_id: int) -> str:
    """Build a session key.

    Recall and delete sessions are scoped to the acting user, so a new search
    replaces the user's previous one. Top sessions are scoped to the message
    that shows the carousel.
    """
    return f"{mode.value}:{scope_id}"


@dataclass
class SessionStore:
    """Keyed store of result lists with per-key serialization."""

    scheduler: Scheduler = field(default_factory=AsyncioScheduler)
    ttl_seconds: float = SESSION_TTL_SECONDS
    _entries: dict[str, _Entry] = field(default_factory=dict)
    _locks: dict[str, _KeyLock] = field(default_factory=dict)
    _generation: int = 0

    async def put(self, key: str, records: list[MediaRecord]) -> Session:
        """Create or overwrite a session and arm its eviction timer."""
        async with self._locked(key):
            self._drop(key)
            self._generation += 1
            generation = self._generation
            now = self.scheduler.now()
            session = Session(
                key=key,
                records=tuple(records),
                created_at=now,
                expires_at=now + self.ttl_seconds,
            )
            entry = _Entry(session=session, generation=generation)
            self._entries[key] = entry
            entry.timer = self.scheduler.call_later(
                self.ttl_seconds, lambda: self._expire(key, generation)
            )
            return session

    async def get(self, key: str) -> tuple[MediaRecord, ...] | None:
        """Return the records stored under ``key``, if any."""
        session = await self.get_session(key)
        return None if session is None else session.records

    async def get_session(self, key: str) -> Session | None:
        """Return the full session stored under ``key``, if any."""
        async with self._locked(key):
            entry = self._live_entry(key)
            return None if entry is None else entry.session

    async def remove(self, key: str) -> None:
        """Evict a session; missing keys are ignored."""
        async with self._locked(key):
            self._drop(key)

    async def replace_at(
        self, key: str, item_id: UUID, record: MediaRecord
    ) -> int | None:
        """Replace the item with ``item_id`` and return its index."""
        async with self._locked(key):
            entry = self._live_entry(key)
            if entry is None:
                return None
            index = index_of(entry.session.records, item_id)
            if index is None:
                return None
            records = list(entry.session.records)
            records[index] = record
            entry.session = replace(entry.session, records=tuple(records))
            return index

    async def remove_item(self, key: str, item_id: UUID) -> ItemRemoval | None:
        """Remove one item, evicting the session once it is empty."""
        async with self._locked(key):
            entry = self._live_entry(key)
            if entry is None:
                return None
            index = index_of(entry.session.records, item_id)
            if index is None:
                return None
            records = list(entry.session.records)
            del records[index]
            if records:
                entry.session = replace(entry.session, records=tuple(records))
            else:
                self._drop(key)
            return ItemRemoval(index=index, remaining=tuple(records))

    async def take(self, key: str, item_id: UUID) -> MediaRecord | None:
        """Evict the session if it still holds ``item_id`` and return that item."""
        async with self._locked(key):
            entry = self._live_entry(key)
            if entry is None:
                return None
            index = index_of(entry.session.records, item_id)
            if index is None:
                return None
            self._drop(key)
            return entry.session.records[index]

    def __len__(self) -> int:
        return len(self._entries)

    async def _expire(self, key: str, generation: int) -> None:
        async with self._locked(key):
            entry = self._entries.get(key)
            if entry is None or entry.generation != generation:
                return
            self._entries.pop(key, None)
            _logger.debug("Session expired: key=%s", key)

    def _live_entry(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.scheduler.now() >= entry.session.expires_at:
            self._drop(key)
            return None
        return entry

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        key_lock = self._locks.get(key)
        if key_lock is None:
            key_lock = _KeyLock()
            self._locks[key] = key_lock
        key_lock.users += 1
        try:
            async with key_lock.lock:
                yield
        finally:
            key_lock.users -= 1
            if key_lock.users == 0:
                self._locks.pop(key, None)


def index_of(records: tuple[MediaRecord, ...], item_id: UUID) -> int | None:
    for index, record in enumerate(records):
        if record.id == item_id:
            return index
    return None
