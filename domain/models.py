from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class Link:
    """
    One-to-one association between a game account name and an external
    chat identity (e.g. a Discord user ID).

    A link refers to a username string, not to a `Player` row, so it may
    point at an account that has never been ranked.
    """

    game_account_name: str
    identity_id: str


@dataclass
class Player:
    """A known game account. Created lazily on the first tier update."""

    id: int
    username: str


@dataclass
class Discipline:
    """A competitive category ("kit") a player is ranked in."""

    id: int
    name: str


@dataclass
class TierRecord:
    """A player's tier code and point total within one discipline."""

    id: int
    player_id: int
    discipline_id: int
    tier_code: str
    points: int


@dataclass(frozen=True)
class LedgerRow:
    """
    One row of the joined ledger read: tier record + player + discipline.

    This is the shape the ranking aggregator consumes. The backing join may
    legitimately yield the same row more than once.
    """

    username: str
    discipline: str
    tier_code: str
    points: int


@dataclass(frozen=True)
class KitStanding:
    name: str
    tier_code: str
    points: int


@dataclass
class PlayerSummary:
    """Aggregated view of one player across all disciplines."""

    username: str
    total_points: int = 0
    kits: List[KitStanding] = field(default_factory=list)
