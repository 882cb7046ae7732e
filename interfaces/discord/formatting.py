from __future__ import annotations

from typing import Iterable, List
from urllib.parse import quote

from domain.models import PlayerSummary

# Discord rejects messages over 2000 characters; leave room for a header.
MESSAGE_CHUNK_LIMIT = 1900


def skin_head_url(username: str) -> str:
    """Avatar of the player's Minecraft skin head."""

    return f"https://crafatar.com/avatars/{quote(username, safe='')}?size=128&overlay"


def format_uptime(seconds: float) -> str:
    """
    Render a duration as days/hours/minutes/seconds.

    Format: {d}d {h}h {m}m {s}s
    """

    total = max(int(seconds), 0)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{days}d {hours}h {minutes}m {secs}s"


def format_kits(summary: PlayerSummary) -> str:
    return ", ".join(f"{kit.name} {kit.tier_code}" for kit in summary.kits)


def format_leaderboard(summaries: Iterable[PlayerSummary]) -> List[str]:
    lines = []
    for rank, summary in enumerate(summaries, start=1):
        lines.append(
            f"{rank}. **{summary.username}** - {summary.total_points} pts ({format_kits(summary)})"
        )
    return lines


def format_profile(summary: PlayerSummary) -> List[str]:
    lines = [f"**{kit.name}**: {kit.tier_code} ({kit.points} pts)" for kit in summary.kits]
    lines.append(f"Total: {summary.total_points} pts")
    return lines


def chunk_lines(lines: Iterable[str], limit: int = MESSAGE_CHUNK_LIMIT) -> List[str]:
    """Join lines into as few messages as possible, each at most `limit` chars."""

    chunks: List[str] = []
    current = ""
    for line in lines:
        line = line[:limit]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks
