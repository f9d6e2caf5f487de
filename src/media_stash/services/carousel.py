"""Carousel state machine for browsing, sending, deleting and editing media."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from media_stash.domain.carousel import (
    ActionToken,
    Actor,
    CarouselAction,
    CarouselMode,
    CarouselStatus,
    CarouselView,
    DeliveryTarget,
)
from media_stash.domain.errors import (
    BackingStoreFailure,
    DeliveryFailure,
    EmptyTagsError,
    ItemMissing,
    SessionExpired,
    Unauthorized,
    ValidationFailed,
)
from media_stash.domain.media import MediaRecord, MediaType, SearchQuery
from media_stash.services.media import MediaRepository, can_delete
from media_stash.services.search import SearchService
from media_stash.services.session_store import SessionStore, index_of, session_key
from media_stash.services.tags import diff_tags, parse_tag_input

_T = TypeVar("_T")

_logger = logging.getLogger(__name__)

_ALLOWED_ACTIONS = {
    CarouselMode.RECALL: {
        CarouselAction.PREV,
        CarouselAction.NEXT,
        CarouselAction.SEND,
        CarouselAction.EDIT,
    },
    CarouselMode.DELETE: {
        CarouselAction.PREV,
        CarouselAction.NEXT,
        CarouselAction.CONFIRM_DELETE,
        CarouselAction.EDIT,
    },
    CarouselMode.TOP: {CarouselAction.PREV, CarouselAction.NEXT, CarouselAction.EDIT},
}

LAST_TAG_MESSAGE = "Cannot remove all tags! Media items must have at least one tag."


class MediaDelivery(Protocol):
    """Posts a media item to a chat."""

    async def deliver(
        self, target: DeliveryTarget, record: MediaRecord, *, as_link: bool = False
    ) -> None:
        """Send the item, or only its link when ``as_link`` is set."""


@dataclass
class CarouselService:
    """Open result sessions and apply carousel actions to them.

    Holds no per-user state: every call starts from the session stored under
    the given key and the item id carried by the action token.
    """

    search_service: SearchService
    repository: MediaRepository
    session_store: SessionStore
    delivery: MediaDelivery
    authorize_delete: Callable[[MediaRecord, Actor], bool] = can_delete

    async def start_recall(self, user_id: int, query: SearchQuery) -> CarouselView | None:
        """Search and open a recall session for the user."""
        records = await self._call_repository(
            self.search_service.search, query, action="search"
        )
        return await self._open(
            session_key(CarouselMode.RECALL, user_id), CarouselMode.RECALL, records
        )

    async def start_delete(self, user_id: int, query: SearchQuery) -> CarouselView | None:
        """Search and open a delete session for the user."""
        records = await self._call_repository(
            self.search_service.search, query, action="search"
        )
        return await self._open(
            session_key(CarouselMode.DELETE, user_id), CarouselMode.DELETE, records
        )

    async def list_top(
        self, guild_id: int, media_type: MediaType | None = None
    ) -> list[MediaRecord]:
        """Return the guild's most used media."""
        return await self._call_repository(
            self.search_service.top_by_popularity,
            guild_id,
            media_type,
            action="top",
        )

    async def open_top(
        self, message_id: int, records: list[MediaRecord]
    ) -> CarouselView | None:
        """Open a shared top session for the message showing the carousel."""
        return await self._open(
            session_key(CarouselMode.TOP, message_id), CarouselMode.TOP, records
        )

    async def handle_action(
        self,
        key: str,
        token: ActionToken,
        actor: Actor,
        *,
        text: str | None = None,
        target: DeliveryTarget | None = None,
    ) -> CarouselView:
        """Apply one action to the session stored under ``key``."""
        if token.action not in _ALLOWED_ACTIONS[token.mode]:
            _logger.warning(
                "Action not allowed: key=%s mode=%s action=%s item=%s",
                key,
                token.mode.value,
                token.action.value,
                token.item_id,
            )
            raise ValidationFailed("That action isn't available here.")

        records, index = await self._locate(key, token)
        if token.action in {CarouselAction.PREV, CarouselAction.NEXT}:
            return _navigate(token, records, index)
        if token.action == CarouselAction.CONFIRM_DELETE:
            return await self._confirm_delete(key, token, records[index], actor)
        if token.action == CarouselAction.SEND:
            return await self._send(key, token, target)
        return await self._edit(key, token, records[index], text or "")

    async def current_item(self, key: str, token: ActionToken) -> MediaRecord:
        """Return the item a control points at, or raise if it is gone."""
        records, index = await self._locate(key, token)
        return records[index]

    async def _open(
        self, key: str, mode: CarouselMode, records: list[MediaRecord]
    ) -> CarouselView | None:
        if not records:
            return None
        await self.session_store.put(key, records)
        return first_page(mode, records)

    async def _locate(
        self, key: str, token: ActionToken
    ) -> tuple[tuple[MediaRecord, ...], int]:
        records = await self.session_store.get(key)
        if records is None:
            raise self._expired(key, token)
        index = index_of(records, token.item_id)
        if index is None:
            raise self._missing(key, token)
        return records, index

    async def _confirm_delete(
        self, key: str, token: ActionToken, record: MediaRecord, actor: Actor
    ) -> CarouselView:
        if not self.authorize_delete(record, actor):
            _logger.warning(
                "Delete denied: key=%s item=%s user=%s", key, record.id, actor.user_id
            )
            raise Unauthorized()

        deleted = await self._call_repository(
            self.repository.delete,
            record.id,
            actor.user_id,
            actor.is_privileged,
            action="delete",
        )
        if not deleted:
            _logger.warning("Delete rejected by repository: key=%s item=%s", key, record.id)
            raise Unauthorized()

        removal = await self.session_store.remove_item(key, record.id)
        if removal is None:
            remaining = await self.session_store.get(key) or ()
            deleted_index = 0
        else:
            remaining = removal.remaining
            deleted_index = removal.index

        if not remaining:
            return CarouselView(
                status=CarouselStatus.EXHAUSTED,
                mode=token.mode,
                notice="Media deleted! No more results.",
            )
        new_index = max(0, min(deleted_index, len(remaining) - 1))
        return CarouselView(
            status=CarouselStatus.ACTIVE,
            mode=token.mode,
            item=remaining[new_index],
            index=new_index,
            total=len(remaining),
            notice=f"Media deleted! {len(remaining)} result(s) remaining.",
        )

    async def _send(
        self, key: str, token: ActionToken, target: DeliveryTarget | None
    ) -> CarouselView:
        if target is None:
            raise ValidationFailed("Cannot send media to this chat.")

        # Single-use: claimed before delivery and never restored.
        record = await self.session_store.take(key, token.item_id)
        if record is None:
            raise await self._stale(key, token)

        failure = await self._deliver(target, record)
        if failure is not None:
            return CarouselView(
                status=CarouselStatus.SEND_FAILED,
                mode=token.mode,
                item=record,
                notice=failure.user_message,
            )

        try:
            await asyncio.to_thread(self.repository.increment_recall_count, record.id)
        except Exception:
            _logger.exception("Failed to increment recall count: item=%s", record.id)
        return CarouselView(
            status=CarouselStatus.SENT,
            mode=token.mode,
            item=record,
            notice="Sent!",
        )

    async def _deliver(
        self, target: DeliveryTarget, record: MediaRecord
    ) -> DeliveryFailure | None:
        try:
            await self.delivery.deliver(target, record)
            return None
        except DeliveryFailure as exc:
            if not exc.too_large:
                _logger.warning("Delivery failed: item=%s error=%s", record.id, exc)
                return exc
            _logger.info("Payload too large, sending link: item=%s", record.id)

        try:
            await self.delivery.deliver(target, record, as_link=True)
            return None
        except DeliveryFailure as exc:
            _logger.warning("Link delivery failed: item=%s error=%s", record.id, exc)
            return exc

    async def _edit(
        self, key: str, token: ActionToken, record: MediaRecord, text: str
    ) -> CarouselView:
        tags = parse_tag_input(text)
        if not tags:
            _logger.warning("Edit rejected, no tags left: key=%s item=%s", key, record.id)
            raise ValidationFailed(LAST_TAG_MESSAGE)

        try:
            updated = await asyncio.to_thread(self.repository.update_tags, record.id, tags)
        except EmptyTagsError as exc:
            raise ValidationFailed(LAST_TAG_MESSAGE) from exc
        except Exception as exc:
            _logger.exception("Repository update_tags failed: item=%s", record.id)
            raise BackingStoreFailure() from exc
        if updated is None:
            raise self._missing(key, token)

        index = await self.session_store.replace_at(key, record.id, updated)
        records = await self.session_store.get(key) or ()
        diff = diff_tags(record.tags, updated.tags)
        return CarouselView(
            status=CarouselStatus.UPDATED,
            mode=token.mode,
            item=updated,
            index=index,
            total=len(records),
            notice="Tags updated." if diff.changed else "No changes made.",
            tag_diff=diff,
        )

    async def _call_repository(
        self, func: Callable[..., _T], *args: object, action: str
    ) -> _T:
        try:
            return await asyncio.to_thread(func, *args)
        except Exception as exc:
            _logger.exception("Repository %s failed", action)
            raise BackingStoreFailure() from exc

    async def _stale(self, key: str, token: ActionToken) -> SessionExpired | ItemMissing:
        if await self.session_store.get(key) is None:
            return self._expired(key, token)
        return self._missing(key, token)

    @staticmethod
    def _expired(key: str, token: ActionToken) -> SessionExpired:
        _logger.warning(
            "Session expired: key=%s action=%s item=%s",
            key,
            token.action.value,
            token.item_id,
        )
        return SessionExpired()

    @staticmethod
    def _missing(key: str, token: ActionToken) -> ItemMissing:
        _logger.warning(
            "Item not in session: key=%s action=%s item=%s",
            key,
            token.action.value,
            token.item_id,
        )
        return ItemMissing()


def _navigate(
    token: ActionToken, records: tuple[MediaRecord, ...], index: int
) -> CarouselView:
    step = -1 if token.action == CarouselAction.PREV else 1
    new_index = max(0, min(len(records) - 1, index + step))
    return CarouselView(
        status=CarouselStatus.ACTIVE,
        mode=token.mode,
        item=records[new_index],
        index=new_index,
        total=len(records),
    )


def first_page(mode: CarouselMode, records: list[MediaRecord]) -> CarouselView:
    """View of the first result of a freshly opened carousel."""
    return CarouselView(
        status=CarouselStatus.ACTIVE,
        mode=mode,
        item=records[0],
        index=0,
        total=len(records),
    )
