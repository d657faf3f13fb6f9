"""
Leaderboard Rendering
=====================
Turns ranking snapshots into embeds (compact live view and paginated
command view), winners blocks, countdown announcements and pagination
buttons.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

import discord
import humanize

from .leaderboard_config import (
    EMBED_COLOR, ButtonConfig, Emojis, LeaderboardKind, LeaderboardSettings, Templates
)
from .ranking import RankingEntry
from .store import LeaderboardConfig
from .utils import SafePaginator


# ==================== FORMATTING ====================
def format_number(value) -> str:
    """Grouped integer, e.g. 1234 -> '1,234'."""
    return humanize.intcomma(int(value or 0))


def split_duration(total_seconds) -> Tuple[int, int, int, int]:
    total = max(0, int(total_seconds or 0))
    days, total = divmod(total, 86400)
    hours, total = divmod(total, 3600)
    minutes, seconds = divmod(total, 60)
    return days, hours, minutes, seconds


def format_duration(total_seconds) -> str:
    days, hours, minutes, seconds = split_duration(total_seconds)
    return Templates.DURATION.format(days=days, hours=hours, minutes=minutes, seconds=seconds)


def format_metric(kind: LeaderboardKind, value: int) -> str:
    if kind == LeaderboardKind.MESSAGE:
        return Templates.MESSAGE_COUNT.format(count=format_number(value))
    return format_duration(value)


def rank_marker(index: int) -> str:
    """Medal for ranks 1-3 (index 0-2), generic marker otherwise."""
    if 0 <= index < len(Emojis.MEDALS):
        return Emojis.MEDALS[index]
    return Emojis.DEFAULT_RANK


def color_marker(index: int) -> str:
    return Emojis.COLOR_MARKERS[index % len(Emojis.COLOR_MARKERS)]


def format_entry_line(index: int, entry: RankingEntry, kind: LeaderboardKind) -> str:
    return (
        f"{Emojis.BULLET} {rank_marker(index)} {color_marker(index)} "
        f"<@{entry.user_id}> : `{format_metric(kind, entry.value)}`"
    )


def build_description(entries: Sequence[RankingEntry], kind: LeaderboardKind, start_index: int = 0) -> str:
    lines = [
        f"{format_entry_line(start_index + offset, entry, kind)}\n\n{Templates.DIVIDER_LINE}"
        for offset, entry in enumerate(entries)
    ]
    description = "\n".join(lines).strip()
    return description or Templates.EMPTY


def format_countdown(end_at: int, now: int) -> str:
    remaining = max(0, end_at - now)
    days = remaining // 86_400_000
    hours = (remaining % 86_400_000) // 3_600_000
    minutes = (remaining % 3_600_000) // 60_000
    return Templates.FOOTER_COUNTDOWN.format(days=days, hours=hours, minutes=minutes)


def _timestamp(now: int) -> datetime:
    return datetime.fromtimestamp(now / 1000, tz=timezone.utc)


def _base_embed(kind: LeaderboardKind, description: str, now: int) -> discord.Embed:
    return discord.Embed(
        title=Templates.TITLES[kind],
        description=description,
        color=EMBED_COLOR,
        timestamp=_timestamp(now),
    )


# ==================== EMBEDS ====================
def build_compact_embed(entries: Sequence[RankingEntry], kind: LeaderboardKind,
                        config: Optional[LeaderboardConfig], now: int) -> discord.Embed:
    """Top-N live view with the cycle countdown and the last winners block."""
    top = list(entries)[:LeaderboardSettings.LEADERBOARD_TOP]
    description = build_description(top, kind)

    if config is not None and config.winners_text:
        description = f"{description}\n\n{Templates.WINNERS_HEADING}\n{config.winners_text}"

    embed = _base_embed(kind, description, now)
    if config is not None and config.has_cycle:
        embed.set_footer(text=format_countdown(config.end_at, now))
    else:
        embed.set_footer(text=Templates.FOOTER_NOT_STARTED)
    return embed


def build_paginated_embed(entries: Sequence[RankingEntry], kind: LeaderboardKind, page: int,
                          now: int, page_size: int = LeaderboardSettings.RESULTS_PER_PAGE
                          ) -> Tuple[discord.Embed, int, int]:
    """Returns (embed, clamped page, page count)."""
    paginator = SafePaginator(list(entries), page_size)
    page = paginator.clamp(page)
    pages = paginator.get_page_count()

    description = build_description(paginator.get_page(page), kind, paginator.start_index(page))
    embed = _base_embed(kind, description, now)
    embed.set_footer(text=Templates.FOOTER_PAGE.format(page=page, pages=pages))
    return embed, page, pages


def build_winners_text(entries: Sequence[RankingEntry], kind: LeaderboardKind) -> str:
    lines = []
    for index, entry in enumerate(list(entries)[:LeaderboardSettings.WINNERS_COUNT]):
        medal = Emojis.MEDALS[index] if index < len(Emojis.MEDALS) else Emojis.BULLET
        lines.append(f"{medal} <@{entry.user_id}> — `{format_metric(kind, entry.value)}`")
    return "\n".join(lines)


def build_timer_text(end_at: int) -> str:
    return Templates.TIMER_MESSAGE.format(unix=end_at // 1000)


# ==================== PAGINATION BUTTONS ====================
def page_custom_id(prefix: str, kind: LeaderboardKind, page: int) -> str:
    return ButtonConfig.SEPARATOR.join((prefix, kind.value, str(page)))


def parse_page_custom_id(custom_id: Optional[str]) -> Optional[Tuple[str, LeaderboardKind, int]]:
    """Decode '{prefix}:{kind}:{page}'; None when the id is not a leaderboard button."""
    if not custom_id:
        return None
    parts = custom_id.split(ButtonConfig.SEPARATOR)
    if len(parts) != 3 or parts[0] not in (ButtonConfig.PREV_PREFIX, ButtonConfig.NEXT_PREFIX):
        return None
    try:
        kind = LeaderboardKind.parse(parts[1])
        page = int(parts[2])
    except ValueError:
        return None
    return parts[0], kind, page


def target_page(prefix: str, page: int) -> int:
    """Page after a button press; the renderer clamps the upper bound."""
    if prefix == ButtonConfig.PREV_PREFIX:
        return max(1, page - 1)
    return page + 1


def build_page_view(kind: LeaderboardKind, page: int, pages: int) -> discord.ui.View:
    """Prev/next buttons; clicks are routed by custom id so they survive restarts."""
    view = discord.ui.View(timeout=None)
    view.add_item(discord.ui.Button(
        style=discord.ButtonStyle.primary,
        label=Emojis.LEFT_BUTTON,
        custom_id=page_custom_id(ButtonConfig.PREV_PREFIX, kind, page),
        disabled=page <= 1,
    ))
    view.add_item(discord.ui.Button(
        style=discord.ButtonStyle.primary,
        label=Emojis.RIGHT_BUTTON,
        custom_id=page_custom_id(ButtonConfig.NEXT_PREFIX, kind, page),
        disabled=page >= pages,
    ))
    return view
