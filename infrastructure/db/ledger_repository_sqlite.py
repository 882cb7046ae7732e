from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List, Optional

from domain.errors import (
    ConflictError,
    DisciplineNotFoundError,
    PlayerNotFoundError,
    StorageError,
)
from domain.models import Discipline, LedgerRow, Player, TierRecord
from domain.repositories import LedgerRepository

logger = logging.getLogger(__name__)

_LEDGER_SELECT = """
    SELECT p.username, k.name, pk.tier_code, pk.points
    FROM player_kits pk
    JOIN players p ON p.id = pk.player_id
    JOIN kits k ON k.id = pk.kit_id
"""


class SqliteLedgerRepository(LedgerRepository):
    """
    SQLite-backed implementation of `LedgerRepository`.

    Owns the `players`, `kits` and `player_kits` tables. There is no unique
    constraint on (player_id, kit_id); the one-record-per-pair rule is kept
    by doing the look-up-then-branch inside a `BEGIN IMMEDIATE` transaction,
    which holds SQLite's write lock for the whole step.
    """

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._ensure_tables()

    @contextmanager
    def _transaction(self, write: bool = True) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open ledger database: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.commit()
        except sqlite3.OperationalError as exc:
            conn.rollback()
            if "locked" in str(exc):
                logger.warning("Ledger database is locked: %s", exc)
                raise ConflictError("The ledger is busy, try again.") from exc
            logger.error("Ledger storage failure", exc_info=True)
            raise StorageError(f"Ledger storage failure: {exc}") from exc
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Ledger storage failure", exc_info=True)
            raise StorageError(f"Ledger storage failure: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS players (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS player_kits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    player_id INTEGER NOT NULL REFERENCES players (id),
                    kit_id INTEGER NOT NULL REFERENCES kits (id),
                    tier_code TEXT NOT NULL,
                    points INTEGER NOT NULL DEFAULT 0
                )
                """
            )

    @staticmethod
    def _select_player(conn: sqlite3.Connection, username: str) -> Optional[Player]:
        row = conn.execute(
            "SELECT id, username FROM players WHERE username = ?", (username,)
        ).fetchone()
        if not row:
            return None
        return Player(id=int(row[0]), username=row[1])

    def _get_or_create_player(self, username: str) -> Player:
        # Committed on its own: a player without tier records is a valid state.
        with self._transaction() as conn:
            player = self._select_player(conn, username)
            if player is not None:
                return player

            cur = conn.execute(
                "INSERT OR IGNORE INTO players (username) VALUES (?)", (username,)
            )
            player = self._select_player(conn, username)
            if player is None:
                raise ConflictError(f"Player {username} could not be created, try again.")
            if cur.rowcount == 1:
                logger.info("Created player %s (id=%d)", username, player.id)
            return player

    def upsert_tier(
        self,
        username: str,
        discipline_name: str,
        tier_code: str,
        points: int,
    ) -> TierRecord:
        player = self._get_or_create_player(username)

        with self._transaction() as conn:
            kit_row = conn.execute(
                "SELECT id FROM kits WHERE name = ?", (discipline_name,)
            ).fetchone()
            if not kit_row:
                raise DisciplineNotFoundError(discipline_name)
            kit_id = int(kit_row[0])

            existing = conn.execute(
                """
                SELECT id FROM player_kits
                WHERE player_id = ? AND kit_id = ?
                ORDER BY id
                LIMIT 1
                """,
                (player.id, kit_id),
            ).fetchone()

            if existing:
                record_id = int(existing[0])
                conn.execute(
                    "UPDATE player_kits SET tier_code = ?, points = ? WHERE id = ?",
                    (tier_code, points, record_id),
                )
            else:
                cur = conn.execute(
                    """
                    INSERT INTO player_kits (player_id, kit_id, tier_code, points)
                    VALUES (?, ?, ?, ?)
                    """,
                    (player.id, kit_id, tier_code, points),
                )
                record_id = int(cur.lastrowid)

        return TierRecord(
            id=record_id,
            player_id=player.id,
            discipline_id=kit_id,
            tier_code=tier_code,
            points=points,
        )

    def get_player(self, username: str) -> Optional[Player]:
        with self._transaction(write=False) as conn:
            return self._select_player(conn, username)

    def find_username(self, query: str) -> Optional[str]:
        with self._transaction(write=False) as conn:
            row = conn.execute(
                """
                SELECT username FROM players
                WHERE username = ? COLLATE NOCASE
                ORDER BY id
                LIMIT 1
                """,
                (query,),
            ).fetchone()
            return row[0] if row else None

    def get_player_ledger(self, username: str) -> List[LedgerRow]:
        with self._transaction(write=False) as conn:
            rows = conn.execute(
                _LEDGER_SELECT + " WHERE p.username = ? ORDER BY pk.points DESC, pk.id",
                (username,),
            ).fetchall()
        if not rows:
            raise PlayerNotFoundError(username)
        return [self._to_row(row) for row in rows]

    def fetch_ledger_rows(self) -> List[LedgerRow]:
        with self._transaction(write=False) as conn:
            rows = conn.execute(_LEDGER_SELECT + " ORDER BY pk.points DESC, pk.id").fetchall()
        logger.debug("Fetched %d ledger rows", len(rows))
        return [self._to_row(row) for row in rows]

    def add_discipline(self, name: str) -> Discipline:
        with self._transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO kits (name) VALUES (?)", (name,))
            row = conn.execute("SELECT id, name FROM kits WHERE name = ?", (name,)).fetchone()
            return Discipline(id=int(row[0]), name=row[1])

    def list_disciplines(self) -> List[Discipline]:
        with self._transaction(write=False) as conn:
            rows = conn.execute("SELECT id, name FROM kits ORDER BY id").fetchall()
            return [Discipline(id=int(row[0]), name=row[1]) for row in rows]

    @staticmethod
    def _to_row(row: tuple) -> LedgerRow:
        return LedgerRow(
            username=row[0],
            discipline=row[1],
            tier_code=row[2],
            points=int(row[3]),
        )
