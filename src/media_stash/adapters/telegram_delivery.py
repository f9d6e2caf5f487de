"""Deliver stashed media into Telegram chats."""

from dataclasses import dataclass

import httpx

from media_stash.adapters.telegram_client import TelegramClient
from media_stash.domain.carousel import DeliveryTarget
from media_stash.domain.errors import DeliveryFailure
from media_stash.domain.media import MediaRecord

SENT_DELETE_PREFIX = "sent_delete:"

_TOO_LARGE_HINTS = ("too big", "too large", "failed to get http url content")


@dataclass
class TelegramMediaDelivery:
    """Send media by URL, or as a plain link when asked to.

    Messages carry a "Sent by" line and a delete button that only the sender
    or an admin may use.
    """

    telegram_client: TelegramClient

    async def deliver(
        self, target: DeliveryTarget, record: MediaRecord, *, as_link: bool = False
    ) -> None:
        """Post the record to the target chat."""
        caption = _caption(target, record)
        reply_markup = (
            sent_message_keyboard(target.sender_id)
            if target.sender_id is not None
            else None
        )
        try:
            if as_link:
                await self.telegram_client.send_message(
                    chat_id=target.chat_id,
                    text=f"{caption}\n{record.media_url}",
                    reply_markup=reply_markup,
                    reply_to_message_id=target.reply_to_message_id,
                )
            else:
                await self.telegram_client.send_media(
                    chat_id=target.chat_id,
                    media_type=record.media_type,
                    media_url=record.media_url,
                    caption=caption,
                    reply_to_message_id=target.reply_to_message_id,
                    reply_markup=reply_markup,
                )
        except httpx.HTTPStatusError as exc:
            raise _delivery_failure(exc) from exc
        except httpx.HTTPError as exc:
            raise DeliveryFailure() from exc


def sent_message_keyboard(sender_id: int) -> dict:
    """Keyboard with a delete button bound to the sender."""
    return {
        "inline_keyboard": [
            [{"text": "🗑 Delete", "callback_data": f"{SENT_DELETE_PREFIX}{sender_id}"}]
        ]
    }


def parse_sent_message_sender(data: str) -> int | None:
    """Return the sender id carried by a delete button, if any."""
    if not data.startswith(SENT_DELETE_PREFIX):
        return None
    raw = data.removeprefix(SENT_DELETE_PREFIX)
    return int(raw) if raw.isdigit() else None


def _caption(target: DeliveryTarget, record: MediaRecord) -> str:
    caption = f"Tags: {', '.join(record.tags)}"
    if target.sender_name:
        caption = f"Sent by: {target.sender_name} | {caption}"
    return caption


def _delivery_failure(exc: httpx.HTTPStatusError) -> DeliveryFailure:
    """Translate a Telegram error response into a delivery failure."""
    status_code = exc.response.status_code
    description = _description(exc.response).lower()
    if status_code == 413 or any(hint in description for hint in _TOO_LARGE_HINTS):
        return DeliveryFailure("That file is too large to send.", too_large=True)
    if status_code == 403:
        return DeliveryFailure("I don't have permission to send messages in this chat.")
    return DeliveryFailure()


def _description(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("description", ""))
    return ""
