"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    telegram_bot_token: str
    supabase_url: str
    supabase_service_key: str
    telegram_allowed_chat_ids: str | None = None
    telegram_admin_user_ids: str | None = None
    telegram_owner_user_id: int | None = None
    media_table: str = "media"
    session_ttl_seconds: int = 15 * 60
    pending_edit_ttl_seconds: int = 5 * 60
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_id_list(raw: str | None) -> set[int] | None:
    """Parse a comma-separated list of Telegram ids from env.

    ``None``, an empty string or ``*`` mean "no restriction".
    """
    if raw is None:
        return None
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return None
    ids: set[int] = set()
    for chunk in cleaned.split(","):
        value = chunk.strip()
        if not value:
            continue
        if value.lstrip("-").isdigit():
            ids.add(int(value))
    return ids or None
