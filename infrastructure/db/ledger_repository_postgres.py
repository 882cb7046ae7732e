from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

import psycopg2
from psycopg2 import errors as pg_errors

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

_CONFLICT_ERRORS = (
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
    pg_errors.LockNotAvailable,
)


class PostgresLedgerRepository(LedgerRepository):
    """
    Postgres-backed implementation of `LedgerRepository`.

    Uses the same `players` / `kits` / `player_kits` schema as the SQLite
    store. Concurrent upserts for one player are serialized by locking the
    player row (`SELECT ... FOR UPDATE`) before the look-up-then-branch on
    `player_kits`.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._ensure_tables()

    @contextmanager
    def _cursor(self) -> Iterator["psycopg2.extensions.cursor"]:
        try:
            conn = psycopg2.connect(**self._db_params)
        except psycopg2.Error as exc:
            logger.error("Could not connect to ledger database", exc_info=True)
            raise StorageError(f"Could not connect to ledger database: {exc}") from exc
        try:
            # `with conn` commits on success and rolls back on error.
            with conn:
                with conn.cursor() as cur:
                    yield cur
        except _CONFLICT_ERRORS as exc:
            logger.warning("Ledger write conflict: %s", exc)
            raise ConflictError("Concurrent ledger update, try again.") from exc
        except psycopg2.Error as exc:
            logger.error("Ledger storage failure", exc_info=True)
            raise StorageError(f"Ledger storage failure: {exc}") from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        """
        Ensure the ledger tables exist.

        Schema (minimal):
          - players (id SERIAL, username TEXT UNIQUE)
          - kits (id SERIAL, name TEXT UNIQUE)
          - player_kits (id SERIAL, player_id, kit_id, tier_code, points)
        """

        with self._cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS players (
                    id SERIAL PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS kits (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS player_kits (
                    id SERIAL PRIMARY KEY,
                    player_id INTEGER NOT NULL REFERENCES players (id),
                    kit_id INTEGER NOT NULL REFERENCES kits (id),
                    tier_code TEXT NOT NULL,
                    points INTEGER NOT NULL DEFAULT 0
                )
                """
            )

    def _get_or_create_player(self, username: str) -> Player:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO players (username)
                VALUES (%s)
                ON CONFLICT (username) DO NOTHING
                RETURNING id
                """,
                (username,),
            )
            created = cur.fetchone()
            if created:
                logger.info("Created player %s (id=%d)", username, created[0])
                return Player(id=int(created[0]), username=username)

            cur.execute("SELECT id, username FROM players WHERE username = %s", (username,))
            row = cur.fetchone()
            if not row:
                raise ConflictError(f"Player {username} could not be created, try again.")
            return Player(id=int(row[0]), username=row[1])

    def upsert_tier(
        self,
        username: str,
        discipline_name: str,
        tier_code: str,
        points: int,
    ) -> TierRecord:
        player = self._get_or_create_player(username)

        with self._cursor() as cur:
            cur.execute("SELECT id FROM kits WHERE name = %s", (discipline_name,))
            kit_row = cur.fetchone()
            if not kit_row:
                raise DisciplineNotFoundError(discipline_name)
            kit_id = int(kit_row[0])

            cur.execute("SELECT id FROM players WHERE id = %s FOR UPDATE", (player.id,))
            cur.execute(
                """
                SELECT id FROM player_kits
                WHERE player_id = %s AND kit_id = %s
                ORDER BY id
                LIMIT 1
                """,
                (player.id, kit_id),
            )
            existing = cur.fetchone()

            if existing:
                record_id = int(existing[0])
                cur.execute(
                    "UPDATE player_kits SET tier_code = %s, points = %s WHERE id = %s",
                    (tier_code, points, record_id),
                )
            else:
                cur.execute(
                    """
                    INSERT INTO player_kits (player_id, kit_id, tier_code, points)
                    VALUES (%s, %s, %s, %s)
                    RETURNING id
                    """,
                    (player.id, kit_id, tier_code, points),
                )
                record_id = int(cur.fetchone()[0])

        return TierRecord(
            id=record_id,
            player_id=player.id,
            discipline_id=kit_id,
            tier_code=tier_code,
            points=points,
        )

    def get_player(self, username: str) -> Optional[Player]:
        with self._cursor() as cur:
            cur.execute("SELECT id, username FROM players WHERE username = %s", (username,))
            row = cur.fetchone()
            if not row:
                return None
            return Player(id=int(row[0]), username=row[1])

    def find_username(self, query: str) -> Optional[str]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT username FROM players
                WHERE lower(username) = lower(%s)
                ORDER BY id
                LIMIT 1
                """,
                (query,),
            )
            row = cur.fetchone()
            return row[0] if row else None

    def get_player_ledger(self, username: str) -> List[LedgerRow]:
        with self._cursor() as cur:
            cur.execute(
                _LEDGER_SELECT + " WHERE p.username = %s ORDER BY pk.points DESC, pk.id",
                (username,),
            )
            rows = cur.fetchall()
        if not rows:
            raise PlayerNotFoundError(username)
        return [self._to_row(row) for row in rows]

    def fetch_ledger_rows(self) -> List[LedgerRow]:
        with self._cursor() as cur:
            cur.execute(_LEDGER_SELECT + " ORDER BY pk.points DESC, pk.id")
            rows = cur.fetchall()
        logger.debug("Fetched %d ledger rows", len(rows))
        return [self._to_row(row) for row in rows]

    def add_discipline(self, name: str) -> Discipline:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO kits (name) VALUES (%s) ON CONFLICT (name) DO NOTHING",
                (name,),
            )
            cur.execute("SELECT id, name FROM kits WHERE name = %s", (name,))
            row = cur.fetchone()
            return Discipline(id=int(row[0]), name=row[1])

    def list_disciplines(self) -> List[Discipline]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name FROM kits ORDER BY id")
            return [Discipline(id=int(row[0]), name=row[1]) for row in cur.fetchall()]

    @staticmethod
    def _to_row(row: tuple) -> LedgerRow:
        return LedgerRow(
            username=row[0],
            discipline=row[1],
            tier_code=row[2],
            points=int(row[3]),
        )
