"""Telegram bot command configuration."""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class TelegramCommand:
    """Declarative bot command definition."""

    command: str
    description: str


class BotCommand(Enum):
    """Enum of bot commands (single source of truth)."""

    SAVE = TelegramCommand("save", "Save media: /save <url> <tags>")
    GET = TelegramCommand("get", "Search by tags and send a result")
    DELETE = TelegramCommand("delete", "Search by tags and delete your media")
    TOP = TelegramCommand("top", "Browse the most used media")
    HELP = TelegramCommand("help", "How tags and carousels work")


def telegram_commands() -> list[dict[str, str]]:
    """Return commands formatted for Telegram API."""
    return [
        {"command": entry.value.command, "description": entry.value.description}
        for entry in BotCommand
    ]


HELP_TEXT = "\n".join(
    [
        "Save and search media using custom tags!",
        "/save <url> <tags> - save an image, GIF or video",
        "  (or reply to a photo, GIF or video with /save [tags])",
        "/get <tags> - browse matches, press Send to post one",
        "  (reply to a message with /get to send as a reply)",
        "/delete <tags> - browse and delete your own media",
        "/top [image|gif|video] - the most used media in this chat",
        "",
        "Tag rules:",
        "- lowercase, letters, digits and underscore only",
        "- max 50 characters per tag, max 20 tags per item",
        "- spaces and commas separate tags",
        "- tag text is capped at 500 characters",
    ]
)
