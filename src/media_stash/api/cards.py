"""Plain-text carousel cards and their inline keyboards."""

from uuid import UUID

from media_stash.domain.carousel import (
    ActionToken,
    CarouselAction,
    CarouselMode,
    CarouselStatus,
    CarouselView,
    TagDiff,
)
from media_stash.domain.media import MediaStats, MediaType
from media_stash.services.media import is_remote_url

_TYPE_LABELS = {
    MediaType.IMAGE: "🖼️ Image",
    MediaType.GIF: "🎬 Gif",
    MediaType.VIDEO: "🎥 Video",
}


def encode_action_token(token: ActionToken) -> str:
    """Build callback_data within Telegram's 64-byte limit."""
    return f"{token.mode.value}:{token.action.value}:{token.item_id}"


def decode_action_token(data: str) -> ActionToken | None:
    """Parse callback data in the format <mode>:<action>:<uuid>."""
    parts = data.split(":")
    if len(parts) != 3:
        return None
    mode, action, item_id = parts
    try:
        return ActionToken(
            mode=CarouselMode(mode),
            action=CarouselAction(action),
            item_id=UUID(item_id),
        )
    except ValueError:
        return None


def render_card(view: CarouselView, header: str | None = None) -> tuple[str, dict | None]:
    """Return message text and keyboard for a carousel view."""
    lines = [line for line in (header, view.notice) if line]
    item = view.item
    if item is None or view.status not in {CarouselStatus.ACTIVE, CarouselStatus.UPDATED}:
        return "\n".join(lines) or "Done.", None
    if lines:
        lines.append("")
    lines.append(_TYPE_LABELS[item.media_type])
    if item.file_name:
        lines.append(f"📁 {item.file_name}")
    lines.extend(
        [
            f"Tags: {', '.join(item.tags) or 'No tags'}",
            f"Owner: {item.owner_user_id}",
            f"Uses: {item.recall_count}",
        ]
    )
    if view.position is not None:
        lines.append(f"Result: {view.position} of {view.total}")
    link = item.thumbnail_url or item.media_url
    if is_remote_url(link):
        lines.append(link)
    if view.index is None:
        return "\n".join(lines), None
    return "\n".join(lines), _keyboard(view.mode, item.id, view.index, view.total)


def format_tag_diff(diff: TagDiff, new_tags: tuple[str, ...]) -> str:
    """Describe what an edit changed."""
    lines = ["Tags updated!"]
    if diff.added:
        lines.append(f"Added: {', '.join(diff.added)}")
    if diff.removed:
        lines.append(f"Removed: {', '.join(diff.removed)}")
    if not diff.changed:
        lines.append("No changes made")
    lines.append(f"New tags: {', '.join(new_tags)}")
    return "\n".join(lines)


def format_stats(stats: MediaStats) -> str:
    """Render owner statistics."""
    lines = [
        "📊 Bot Statistics",
        f"Active media: {stats.active_count}",
        f"Deleted media: {stats.deleted_count}",
        f"Total recalls: {stats.total_recalls}",
        "",
        "Top tags:",
    ]
    lines.extend(f"{tag}: {count}" for tag, count in stats.top_tags)
    if not stats.top_tags:
        lines.append("None")
    lines.extend(["", "Top chats:"])
    lines.extend(f"{guild_id}: {count}" for guild_id, count in stats.top_guilds)
    if not stats.top_guilds:
        lines.append("None")
    return "\n".join(lines)


def _keyboard(mode: CarouselMode, item_id: UUID, index: int, total: int) -> dict:
    """Build the inline keyboard for an active card."""

    def button(label: str, action: CarouselAction) -> dict[str, str]:
        token = ActionToken(mode=mode, action=action, item_id=item_id)
        return {"text": label, "callback_data": encode_action_token(token)}

    navigation = []
    if index > 0:
        navigation.append(button("◀ Previous", CarouselAction.PREV))
    if index < total - 1:
        navigation.append(button("Next ▶", CarouselAction.NEXT))

    actions = []
    if mode == CarouselMode.RECALL:
        actions.append(button("✓ Send", CarouselAction.SEND))
    elif mode == CarouselMode.DELETE:
        actions.append(button("🗑 Delete", CarouselAction.CONFIRM_DELETE))
    actions.append(button("✏️ Edit tags", CarouselAction.EDIT))

    rows = [row for row in (navigation, actions) if row]
    return {"inline_keyboard": rows}
