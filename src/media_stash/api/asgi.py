"""ASGI entrypoint for the media stash API."""

from media_stash.api.app import create_app
from media_stash.containers import build_container

app = create_app(build_container())
