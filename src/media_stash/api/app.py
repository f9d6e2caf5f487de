"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace

import httpx
from fastapi import FastAPI, Request

from media_stash.adapters.telegram_delivery import parse_sent_message_sender
from media_stash.api.cards import (
    decode_action_token,
    format_stats,
    format_tag_diff,
    render_card,
)
from media_stash.api.telegram_models import (
    TelegramCallbackQuery,
    TelegramMessage,
    TelegramUpdate,
    TelegramUser,
)
from media_stash.app_logging import configure_logging
from media_stash.config import parse_id_list
from media_stash.containers import AppContainer
from media_stash.domain.carousel import (
    ActionToken,
    Actor,
    CarouselAction,
    CarouselMode,
    CarouselStatus,
    CarouselView,
    DeliveryTarget,
)
from media_stash.domain.errors import CarouselError, ValidationFailed
from media_stash.domain.media import MediaType, SearchQuery
from media_stash.services.carousel import first_page
from media_stash.services.media import is_remote_url
from media_stash.services.session_store import session_key
from media_stash.services.tags import parse_tag_input, suggest_tags
from media_stash.telegram_commands import HELP_TEXT, telegram_commands

_GENERIC_FAILURE = "Something went wrong. Please try again later."
_MEDIA_TYPES = {media_type.value for media_type in MediaType}
_SAVE_USAGE = (
    "Usage: /save <url> <tags>\n"
    "Or reply to a photo, GIF or video with /save [tags]."
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingEdit:
    """An edit button press waiting for the user's new tags."""

    key: str
    token: ActionToken
    chat_id: int
    message_id: int
    prompt_message_id: int


@dataclass(frozen=True)
class _Attachment:
    media_type: MediaType
    file_id: str
    file_name: str | None = None


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    allowed_chat_ids = parse_id_list(container.settings.telegram_allowed_chat_ids)
    admin_user_ids = parse_id_list(container.settings.telegram_admin_user_ids) or set()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await app.state.container.telegram_client.set_my_commands(
                telegram_commands()
            )
        except Exception:
            logger.exception("Failed to sync Telegram bot commands")
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/telegram/webhook")
    async def telegram_webhook(update: TelegramUpdate, request: Request) -> dict[str, str]:
        """Handle Telegram webhook updates."""
        state_container: AppContainer = request.app.state.container
        telegram_client = state_container.telegram_client
        chat_id = _extract_chat_id(update)
        if chat_id is not None and not _is_chat_allowed(chat_id, allowed_chat_ids):
            if update.callback_query:
                await telegram_client.answer_callback_query(
                    update.callback_query.id, text="Not authorized."
                )
            elif update.message:
                await telegram_client.send_message(
                    chat_id=chat_id, text="This bot isn't enabled in this chat."
                )
            return {"status": "ok"}

        try:
            if update.callback_query:
                await _handle_callback(
                    state_container, update.callback_query, admin_user_ids
                )
            elif update.message and update.message.text and update.message.from_user:
                await _handle_message(state_container, update.message, admin_user_ids)
        except Exception:
            logger.exception(
                "Failed to handle Telegram update",
                extra={"update_id": update.update_id},
            )
            if chat_id is not None:
                await telegram_client.send_message(chat_id=chat_id, text=_GENERIC_FAILURE)
        return {"status": "ok"}

    return app


async def _handle_message(
    container: AppContainer, message: TelegramMessage, admin_user_ids: set[int]
) -> None:
    """Dispatch a text message to a command or a pending edit."""
    parts = (message.text or "").strip().split(maxsplit=1)
    if not parts:
        return
    command = parts[0].split("@", maxsplit=1)[0].lower()
    argument = parts[1] if len(parts) > 1 else ""

    if command in {"/start", "/help"}:
        await container.telegram_client.send_message(
            chat_id=message.chat.id, text=HELP_TEXT
        )
    elif command == "/save":
        await _handle_save(container, message, argument)
    elif command == "/get":
        await _handle_search(container, message, CarouselMode.RECALL, argument)
    elif command == "/delete":
        await _handle_search(container, message, CarouselMode.DELETE, argument)
    elif command == "/top":
        await _handle_top(container, message, argument)
    elif command == "/stats":
        await _handle_stats(container, message)
    elif command == "/purge":
        await _handle_purge(container, message, argument)
    elif command.startswith("/"):
        return
    else:
        await _apply_pending_edit(container, message, admin_user_ids)


async def _handle_save(
    container: AppContainer, message: TelegramMessage, argument: str
) -> None:
    words = argument.split()
    attachment = _attachment(message.reply_to_message)
    if attachment is not None and not (words and is_remote_url(words[0])):
        await _save_attachment(container, message, attachment, argument)
        return
    if not words:
        await container.telegram_client.send_message(
            chat_id=message.chat.id, text=_SAVE_USAGE
        )
        return
    media_type, tag_words = _split_type_filter(words[1:])
    try:
        record = container.media_service.store(
            guild_id=message.chat.id,
            owner_user_id=_user_id(message),
            media_url=words[0],
            tags_text=" ".join(tag_words),
            media_type=media_type,
        )
    except ValidationFailed as exc:
        await container.telegram_client.send_message(
            chat_id=message.chat.id, text=exc.user_message
        )
        return
    await container.telegram_client.send_message(
        chat_id=message.chat.id,
        text=f"Saved {record.media_type.value} with tags: {', '.join(record.tags)}",
    )


async def _save_attachment(
    container: AppContainer,
    message: TelegramMessage,
    attachment: _Attachment,
    argument: str,
) -> None:
    """Save the photo, GIF or video the command replies to."""
    tags_text = argument
    if not tags_text.strip() and message.reply_to_message is not None:
        suggested = suggest_tags(
            message.reply_to_message.caption, attachment.file_name
        )
        tags_text = " ".join(suggested)
    try:
        record = container.media_service.store(
            guild_id=message.chat.id,
            owner_user_id=_user_id(message),
            media_url=attachment.file_id,
            tags_text=tags_text,
            media_type=attachment.media_type,
            file_name=attachment.file_name,
        )
    except ValidationFailed as exc:
        await container.telegram_client.send_message(
            chat_id=message.chat.id, text=exc.user_message
        )
        return
    await container.telegram_client.send_message(
        chat_id=message.chat.id,
        text=f"Saved {record.media_type.value} with tags: {', '.join(record.tags)}",
    )


async def _handle_search(
    container: AppContainer,
    message: TelegramMessage,
    mode: CarouselMode,
    argument: str,
) -> None:
    """Open a recall or delete carousel for the sender."""
    telegram_client = container.telegram_client
    media_type, tag_words = _split_type_filter(argument.split())
    try:
        tags = parse_tag_input(" ".join(tag_words))
    except ValidationFailed as exc:
        await telegram_client.send_message(chat_id=message.chat.id, text=exc.user_message)
        return
    if not tags:
        await telegram_client.send_message(
            chat_id=message.chat.id, text=ValidationFailed.default_message
        )
        return

    user_id = _user_id(message)
    query = SearchQuery(guild_id=message.chat.id, tags=tuple(tags), media_type=media_type)
    try:
        if mode == CarouselMode.RECALL:
            view = await container.carousel_service.start_recall(user_id, query)
        else:
            view = await container.carousel_service.start_delete(user_id, query)
    except CarouselError as exc:
        await telegram_client.send_message(chat_id=message.chat.id, text=exc.user_message)
        return

    if view is None:
        filter_msg = f" (type: {media_type.value})" if media_type else ""
        await telegram_client.send_message(
            chat_id=message.chat.id,
            text=f"No results found for tags: {', '.join(tags)}{filter_msg}",
        )
        return

    header = f"Found {view.total} result(s) for: {', '.join(tags)}"
    if mode == CarouselMode.RECALL:
        reply_to = message.reply_to_message
        container.prompt_cache.set(
            _reply_target_key(user_id),
            DeliveryTarget(
                chat_id=message.chat.id,
                reply_to_message_id=reply_to.message_id if reply_to else None,
            ),
            ttl_seconds=container.settings.session_ttl_seconds,
        )
    else:
        header += "\nYou can only delete your own media (or if you're an admin)."
    text, reply_markup = render_card(view, header)
    await telegram_client.send_message(
        chat_id=message.chat.id, text=text, reply_markup=reply_markup
    )


async def _handle_top(
    container: AppContainer, message: TelegramMessage, argument: str
) -> None:
    """Post a shared carousel of the chat's most used media."""
    telegram_client = container.telegram_client
    media_type = _parse_media_type(argument.strip().lower().removeprefix("type:"))
    try:
        records = await container.carousel_service.list_top(message.chat.id, media_type)
    except CarouselError as exc:
        await telegram_client.send_message(chat_id=message.chat.id, text=exc.user_message)
        return

    filter_msg = f" ({media_type.value})" if media_type else ""
    if not records:
        await telegram_client.send_message(
            chat_id=message.chat.id, text=f"No results found{filter_msg}"
        )
        return

    text, reply_markup = render_card(
        first_page(CarouselMode.TOP, records),
        f"🏆 Top {len(records)} most used{filter_msg}",
    )
    message_id = await telegram_client.send_message(
        chat_id=message.chat.id, text=text, reply_markup=reply_markup
    )
    await container.carousel_service.open_top(message_id, records)


async def _handle_stats(container: AppContainer, message: TelegramMessage) -> None:
    """Show bot-wide statistics to the owner."""
    denial = _owner_denial(container, message)
    if denial is not None:
        await container.telegram_client.send_message(chat_id=message.chat.id, text=denial)
        return
    stats = container.stats_service.collect()
    await container.telegram_client.send_message(
        chat_id=message.chat.id, text=format_stats(stats)
    )


async def _handle_purge(
    container: AppContainer, message: TelegramMessage, argument: str
) -> None:
    """Tombstone every item of a chat, the current one by default."""
    telegram_client = container.telegram_client
    denial = _owner_denial(container, message)
    if denial is not None:
        await telegram_client.send_message(chat_id=message.chat.id, text=denial)
        return
    value = argument.strip()
    if not value:
        guild_id = message.chat.id
    else:
        try:
            guild_id = int(value)
        except ValueError:
            await telegram_client.send_message(
                chat_id=message.chat.id, text="Usage: /purge [chat_id]"
            )
            return
    count = container.stats_service.purge_guild(guild_id)
    await telegram_client.send_message(
        chat_id=message.chat.id,
        text=f"🗑 Purged chat {guild_id}: {count} media deleted.",
    )


async def _handle_callback(
    container: AppContainer,
    callback: TelegramCallbackQuery,
    admin_user_ids: set[int],
) -> None:
    """Apply a carousel button press and update the carousel message."""
    telegram_client = container.telegram_client
    sender_id = parse_sent_message_sender(callback.data or "")
    if sender_id is not None and callback.message is not None:
        await _handle_sent_delete(container, callback, sender_id, admin_user_ids)
        return

    token = decode_action_token(callback.data or "")
    message = callback.message
    if token is None or message is None:
        await telegram_client.answer_callback_query(
            callback.id, text="Invalid interaction."
        )
        return

    user_id = callback.from_user.id
    actor = Actor(user_id=user_id, is_privileged=user_id in admin_user_ids)
    key = _session_key_for(token.mode, user_id, message.message_id)
    try:
        if token.action == CarouselAction.EDIT:
            record = await container.carousel_service.current_item(key, token)
        else:
            view = await container.carousel_service.handle_action(
                key,
                token,
                actor,
                target=_delivery_target(container, callback.from_user, message),
            )
    except CarouselError as exc:
        await telegram_client.answer_callback_query(callback.id, text=exc.user_message)
        return

    await telegram_client.answer_callback_query(callback.id)
    if token.action == CarouselAction.EDIT:
        prompt_message_id = await telegram_client.send_message(
            chat_id=message.chat.id,
            text=(
                "Reply with the new tags (space or comma separated).\n"
                f"Current tags: {' '.join(record.tags)}"
            ),
            reply_markup={"force_reply": True, "selective": True},
        )
        container.prompt_cache.set(
            _pending_edit_key(user_id),
            PendingEdit(
                key=key,
                token=token,
                chat_id=message.chat.id,
                message_id=message.message_id,
                prompt_message_id=prompt_message_id,
            ),
            ttl_seconds=container.settings.pending_edit_ttl_seconds,
        )
        return

    if token.action == CarouselAction.SEND:
        container.prompt_cache.pop(_reply_target_key(user_id))
    if _is_unchanged(view, token):
        return
    text, reply_markup = render_card(view)
    await telegram_client.edit_message_text(
        chat_id=message.chat.id,
        message_id=message.message_id,
        text=text,
        reply_markup=reply_markup,
    )


async def _handle_sent_delete(
    container: AppContainer,
    callback: TelegramCallbackQuery,
    sender_id: int,
    admin_user_ids: set[int],
) -> None:
    """Remove a sent media message for its sender or an admin."""
    telegram_client = container.telegram_client
    message = callback.message
    if message is None:
        return
    user_id = callback.from_user.id
    if user_id != sender_id and user_id not in admin_user_ids:
        await telegram_client.answer_callback_query(
            callback.id, text="Only the sender or an admin can delete this."
        )
        return
    try:
        await telegram_client.delete_message(
            chat_id=message.chat.id, message_id=message.message_id
        )
    except httpx.HTTPError as exc:
        logger.warning(
            "Failed to delete sent message: chat=%s message=%s error=%s",
            message.chat.id,
            message.message_id,
            exc,
        )
        await telegram_client.answer_callback_query(
            callback.id,
            text="Failed to delete. Make sure I have permission to delete messages.",
        )
        return
    await telegram_client.answer_callback_query(callback.id, text="Message deleted.")


async def _apply_pending_edit(
    container: AppContainer, message: TelegramMessage, admin_user_ids: set[int]
) -> None:
    """Use a reply to the edit prompt as the new tags for a pending edit."""
    user_id = _user_id(message)
    edit_key = _pending_edit_key(user_id)
    pending = container.prompt_cache.get(edit_key)
    if not isinstance(pending, PendingEdit) or not _answers_prompt(message, pending):
        return
    container.prompt_cache.pop(edit_key)

    telegram_client = container.telegram_client
    actor = Actor(user_id=user_id, is_privileged=user_id in admin_user_ids)
    try:
        view = await container.carousel_service.handle_action(
            pending.key, pending.token, actor, text=message.text
        )
    except CarouselError as exc:
        await telegram_client.send_message(chat_id=message.chat.id, text=exc.user_message)
        return

    if view.item is not None and view.tag_diff is not None:
        await telegram_client.send_message(
            chat_id=message.chat.id,
            text=format_tag_diff(view.tag_diff, view.item.tags),
        )
    if view.index is not None:
        text, reply_markup = render_card(view)
        await telegram_client.edit_message_text(
            chat_id=pending.chat_id,
            message_id=pending.message_id,
            text=text,
            reply_markup=reply_markup,
        )


def _answers_prompt(message: TelegramMessage, pending: PendingEdit) -> bool:
    """Only a reply to the prompt, in the prompt's chat, counts as new tags."""
    reply_to = message.reply_to_message
    return (
        message.chat.id == pending.chat_id
        and reply_to is not None
        and reply_to.message_id == pending.prompt_message_id
    )


def _owner_denial(container: AppContainer, message: TelegramMessage) -> str | None:
    owner_id = container.settings.telegram_owner_user_id
    if owner_id is None:
        return "Owner commands are disabled (TELEGRAM_OWNER_USER_ID not configured)."
    if _user_id(message) != owner_id:
        return "Owner only."
    return None


def _attachment(message: TelegramMessage | None) -> _Attachment | None:
    """Pick the media a /save command replies to."""
    if message is None:
        return None
    if message.animation is not None:
        return _Attachment(
            MediaType.GIF, message.animation.file_id, message.animation.file_name
        )
    if message.video is not None:
        return _Attachment(MediaType.VIDEO, message.video.file_id, message.video.file_name)
    if message.photo:
        # Telegram lists photo sizes smallest first.
        return _Attachment(MediaType.IMAGE, message.photo[-1].file_id)
    return None


def _session_key_for(mode: CarouselMode, user_id: int, message_id: int) -> str:
    """Top carousels are shared per message; the others belong to one user."""
    if mode == CarouselMode.TOP:
        return session_key(mode, message_id)
    return session_key(mode, user_id)


def _delivery_target(
    container: AppContainer, user: TelegramUser, message: TelegramMessage
) -> DeliveryTarget:
    """Reply to the remembered message when the carousel lives in the same chat."""
    cached = container.prompt_cache.get(_reply_target_key(user.id))
    if isinstance(cached, DeliveryTarget) and cached.chat_id == message.chat.id:
        target = cached
    else:
        target = DeliveryTarget(chat_id=message.chat.id)
    return replace(target, sender_id=user.id, sender_name=_display_name(user))


def _display_name(user: TelegramUser) -> str:
    if user.username:
        return f"@{user.username}"
    return user.first_name or str(user.id)


def _is_unchanged(view: CarouselView, token: ActionToken) -> bool:
    """Telegram rejects edits that leave a message as it was."""
    return (
        view.status == CarouselStatus.ACTIVE
        and view.notice is None
        and view.item is not None
        and view.item.id == token.item_id
    )


def _split_type_filter(words: list[str]) -> tuple[MediaType | None, list[str]]:
    """Pull a ``type:<image|gif|video>`` word out of command arguments."""
    media_type: MediaType | None = None
    rest: list[str] = []
    for word in words:
        prefix, sep, value = word.lower().partition(":")
        if sep and prefix == "type" and value in _MEDIA_TYPES:
            media_type = MediaType(value)
            continue
        rest.append(word)
    return media_type, rest


def _parse_media_type(value: str) -> MediaType | None:
    return MediaType(value) if value in _MEDIA_TYPES else None


def _reply_target_key(user_id: int) -> str:
    return f"reply:{user_id}"


def _pending_edit_key(user_id: int) -> str:
    return f"edit:{user_id}"


def _user_id(message: TelegramMessage) -> int:
    if message.from_user is None:
        raise ValueError("Message has no sender")
    return message.from_user.id


def _extract_chat_id(update: TelegramUpdate) -> int | None:
    """Extract the chat id from an update, if present."""
    if update.callback_query and update.callback_query.message:
        return update.callback_query.message.chat.id
    if update.message:
        return update.message.chat.id
    return None


def _is_chat_allowed(chat_id: int, allowed: set[int] | None) -> bool:
    """Return true when the bot may operate in the chat."""
    return allowed is None or chat_id in allowed
