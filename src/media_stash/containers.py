"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from media_stash.adapters.supabase_media_repository import SupabaseMediaRepository
from media_stash.adapters.telegram_client import HttpxTelegramClient, TelegramClient
from media_stash.adapters.telegram_delivery import TelegramMediaDelivery
from media_stash.config import Settings
from media_stash.services.cache import Cache, InMemoryCache
from media_stash.services.carousel import CarouselService
from media_stash.services.media import MediaService
from media_stash.services.search import SearchService
from media_stash.services.session_store import SessionStore
from media_stash.services.stats import StatsService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    telegram_client: TelegramClient
    media_service: MediaService
    carousel_service: CarouselService
    stats_service: StatsService
    prompt_cache: Cache
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    media_repository = SupabaseMediaRepository(
        supabase_client, table_name=resolved_settings.media_table
    )
    telegram_client = HttpxTelegramClient.create(resolved_settings.telegram_bot_token)
    carousel_service = CarouselService(
        search_service=SearchService(media_repository),
        repository=media_repository,
        session_store=SessionStore(ttl_seconds=resolved_settings.session_ttl_seconds),
        delivery=TelegramMediaDelivery(telegram_client),
    )

    async def close_resources() -> None:
        await telegram_client.close()

    return AppContainer(
        settings=resolved_settings,
        telegram_client=telegram_client,
        media_service=MediaService(media_repository),
        carousel_service=carousel_service,
        stats_service=StatsService(media_repository),
        prompt_cache=InMemoryCache(),
        close_resources=close_resources,
    )
