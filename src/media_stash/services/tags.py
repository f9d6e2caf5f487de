"""Tag normalization helpers."""

import re
from collections.abc import Iterable
from pathlib import PurePosixPath

from media_stash.domain.carousel import TagDiff
from media_stash.domain.errors import ValidationFailed

MAX_TAG_LENGTH = 50
MAX_TAGS_PER_ITEM = 20
MAX_TAG_INPUT_LENGTH = 500

_SEPARATORS = re.compile(r"[\s,]+")
_DISALLOWED = re.compile(r"[^a-z0-9_]")
_FILE_NAME_SEPARATORS = re.compile(r"[._\-]+")


def normalize_tags(text: str) -> list[str]:
    """Convert free text into an ordered, de-duplicated list of tags.

    An empty list is a valid result; callers decide whether it is acceptable.
    """
    tags: list[str] = []
    seen: set[str] = set()
    for chunk in _SEPARATORS.split(text.lower()):
        tag = _DISALLOWED.sub("", chunk)
        if not tag or len(tag) > MAX_TAG_LENGTH or tag in seen:
            continue
        seen.add(tag)
        tags.append(tag)
    return tags[:MAX_TAGS_PER_ITEM]


def parse_tag_input(text: str) -> list[str]:
    """Normalize user-typed tags, rejecting input over the length cap."""
    if len(text) > MAX_TAG_INPUT_LENGTH:
        raise ValidationFailed(
            f"Too much tag text. Keep it under {MAX_TAG_INPUT_LENGTH} characters."
        )
    return normalize_tags(text)


def suggest_tags(caption: str | None, file_name: str | None) -> list[str]:
    """Derive tags from a message caption and an attachment's file name."""
    parts = [caption or ""]
    if file_name:
        parts.append(_FILE_NAME_SEPARATORS.sub(" ", PurePosixPath(file_name).stem))
    return normalize_tags(" ".join(parts))


def diff_tags(old: Iterable[str], new: Iterable[str]) -> TagDiff:
    """Return tags added and removed going from ``old`` to ``new``."""
    old_list = list(old)
    new_list = list(new)
    old_set = set(old_list)
    new_set = set(new_list)
    return TagDiff(
        added=tuple(tag for tag in new_list if tag not in old_set),
        removed=tuple(tag for tag in old_list if tag not in new_set),
    )
