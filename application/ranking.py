"""
Ranking aggregation over joined ledger rows.

The ledger read joins tier records with players and disciplines; depending
on the backing store that join can fan out and return the same row more
than once. Aggregation therefore always runs in three steps:

1. `dedupe_rows`: collapse rows by (username, discipline), first one wins.
2. `group_by_player`: fold the surviving rows into `PlayerSummary` objects.
3. `build_leaderboard`: stable sort by total points, then truncate.

Summing before step 1 double-counts points.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from domain.errors import InvalidQueryError, PlayerNotFoundError
from domain.models import KitStanding, LedgerRow, PlayerSummary

DEFAULT_LEADERBOARD_LIMIT = 100


def dedupe_rows(rows: Iterable[LedgerRow]) -> List[LedgerRow]:
    """Drop repeated (username, discipline) rows, keeping the first one seen."""

    seen: set[Tuple[str, str]] = set()
    unique: List[LedgerRow] = []
    for row in rows:
        key = (row.username, row.discipline)
        if key in seen:
            continue
        seen.add(key)
        unique.append(row)
    return unique


def group_by_player(rows: Iterable[LedgerRow]) -> List[PlayerSummary]:
    """
    Group deduplicated rows per username.

    Summaries come back in the order each username was first encountered.
    """

    summaries: Dict[str, PlayerSummary] = {}
    for row in rows:
        summary = summaries.get(row.username)
        if summary is None:
            summary = PlayerSummary(username=row.username)
            summaries[row.username] = summary
        summary.kits.append(
            KitStanding(name=row.discipline, tier_code=row.tier_code, points=row.points)
        )
        summary.total_points += row.points
    return list(summaries.values())


def build_leaderboard(
    rows: Iterable[LedgerRow],
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
) -> List[PlayerSummary]:
    """
    Turn raw ledger rows into the bounded leaderboard.

    Players with equal totals keep their discovery order.
    """

    if limit <= 0:
        raise InvalidQueryError("Leaderboard limit must be greater than zero.")

    summaries = group_by_player(dedupe_rows(rows))
    summaries.sort(key=lambda s: s.total_points, reverse=True)
    return summaries[:limit]


def build_profile(username: str, rows: Iterable[LedgerRow]) -> PlayerSummary:
    """Single-player aggregation with the same dedup rule as the leaderboard."""

    own_rows = [row for row in rows if row.username == username]
    summaries = group_by_player(dedupe_rows(own_rows))
    if not summaries:
        raise PlayerNotFoundError(username)

    summary = summaries[0]
    summary.kits.sort(key=lambda k: k.points, reverse=True)
    return summary
