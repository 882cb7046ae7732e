from __future__ import annotations

from typing import List, Optional, Protocol

from .models import Discipline, Link, LedgerRow, Player, TierRecord


class LinkRepository(Protocol):
    """
    Bijective mapping between game account names and external identities.

    Implementations must guarantee that, at every point in time, a name maps
    to at most one identity and an identity to at most one name, even under
    concurrent `create_link` calls.
    """

    def create_link(self, game_account_name: str, identity_id: str) -> Link:
        """
        Persist a new link.

        Raises `DuplicateLinkError` if either side is already linked.
        """

        ...

    def remove_link(self, identity_id: str) -> str:
        """
        Remove the link owned by `identity_id` and return the unlinked name.

        Raises `NotLinkedError` if the identity has no link.
        """

        ...

    def find_by_name(self, game_account_name: str) -> Optional[str]:
        """Return the identity linked to the name, or None."""

        ...

    def find_by_identity(self, identity_id: str) -> Optional[str]:
        """Return the name linked to the identity, or None."""

        ...


class LedgerRepository(Protocol):
    """
    Persistence abstraction over players, disciplines ("kits") and the
    per-(player, discipline) tier records.

    Implementations are responsible for:
    - Keeping at most one tier record per (player, discipline) pair.
    - Translating driver failures into `StorageError` / `ConflictError`.
    """

    def upsert_tier(
        self,
        username: str,
        discipline_name: str,
        tier_code: str,
        points: int,
    ) -> TierRecord:
        """
        Get-or-create the player, resolve the discipline and insert or
        overwrite the tier record. Returns the post-write record.

        Raises `DisciplineNotFoundError` if the discipline is unknown.
        """

        ...

    def get_player(self, username: str) -> Optional[Player]:
        ...

    def find_username(self, query: str) -> Optional[str]:
        """Case-insensitive username match; returns the stored spelling."""

        ...

    def get_player_ledger(self, username: str) -> List[LedgerRow]:
        """
        Return the player's rows joined with discipline names, highest
        points first.

        Raises `PlayerNotFoundError` if the player has no tier records.
        """

        ...

    def fetch_ledger_rows(self) -> List[LedgerRow]:
        """Return every tier record joined with player and discipline."""

        ...

    def add_discipline(self, name: str) -> Discipline:
        """Create the discipline if missing and return it."""

        ...

    def list_disciplines(self) -> List[Discipline]:
        ...
