"""Telegram API client adapter."""

from dataclasses import dataclass
from typing import Protocol

import httpx

from media_stash.domain.media import MediaType

_MEDIA_METHODS = {
    MediaType.IMAGE: ("sendPhoto", "photo"),
    MediaType.GIF: ("sendAnimation", "animation"),
    MediaType.VIDEO: ("sendVideo", "video"),
}


class TelegramClient(Protocol):
    """Interface for Telegram API interactions."""

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict | None = None,
        reply_to_message_id: int | None = None,
    ) -> int:
        """Send a text message and return its message id."""

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: dict | None = None,
    ) -> None:
        """Replace the text and keyboard of a sent message."""

    async def send_media(
        self,
        chat_id: int,
        media_type: MediaType,
        media_url: str,
        caption: str | None = None,
        reply_to_message_id: int | None = None,
        reply_markup: dict | None = None,
    ) -> int:
        """Send a photo, animation or video by URL or file id; return its message id."""

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        """Delete a message the bot sent."""

    async def answer_callback_query(
        self, callback_query_id: str, text: str | None = None
    ) -> None:
        """Answer a Telegram callback query."""

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        """Set the bot command list."""


@dataclass
class HttpxTelegramClient:
    """Telegram client implemented with httpx."""

    bot_token: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, bot_token: str) -> "HttpxTelegramClient":
        """Create a Telegram client with a managed httpx session."""
        return cls(bot_token=bot_token, http_client=httpx.AsyncClient())

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict | None = None,
        reply_to_message_id: int | None = None,
    ) -> int:
        """Send a message using Telegram's sendMessage API."""
        payload: dict[str, object] = {"chat_id": chat_id, "text": text}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        result = await self._call("sendMessage", payload)
        return _message_id(result)

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: dict | None = None,
    ) -> None:
        """Edit a message using Telegram's editMessageText API."""
        payload: dict[str, object] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        await self._call("editMessageText", payload)

    async def send_media(
        self,
        chat_id: int,
        media_type: MediaType,
        media_url: str,
        caption: str | None = None,
        reply_to_message_id: int | None = None,
        reply_markup: dict | None = None,
    ) -> int:
        """Send media by URL or file id with the method matching its type."""
        method, field_name = _MEDIA_METHODS[media_type]
        payload: dict[str, object] = {"chat_id": chat_id, field_name: media_url}
        if caption is not None:
            payload["caption"] = caption
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        result = await self._call(method, payload)
        return _message_id(result)

    async def answer_callback_query(
        self, callback_query_id: str, text: str | None = None
    ) -> None:
        """Answer a callback query using Telegram's API."""
        payload: dict[str, object] = {"callback_query_id": callback_query_id}
        if text is not None:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload)

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        """Delete a message using Telegram's deleteMessage API."""
        await self._call(
            "deleteMessage", {"chat_id": chat_id, "message_id": message_id}
        )

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        """Set the bot command list."""
        await self._call("setMyCommands", {"commands": commands})

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _call(self, method: str, payload: dict[str, object]) -> object:
        url = f"https://api.telegram.org/bot{self.bot_token}/{method}"
        response = await self.http_client.post(url, json=payload, timeout=10)
        response.raise_for_status()
        return response.json().get("result")


def _message_id(result: object) -> int:
    if isinstance(result, dict) and isinstance(result.get("message_id"), int):
        return result["message_id"]
    raise RuntimeError("Telegram response did not include a message id")
