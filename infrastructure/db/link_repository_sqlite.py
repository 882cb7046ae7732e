from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from domain.errors import ConflictError, DuplicateLinkError, NotLinkedError, StorageError
from domain.models import Link
from domain.repositories import LinkRepository

logger = logging.getLogger(__name__)


class SqliteLinkRepository(LinkRepository):
    """
    SQLite-backed implementation of `LinkRepository`.

    Stores links in an `account_links` table with a uniqueness constraint on
    each column, so the database itself rejects a second link for either
    side even if two writers pass the pre-check at the same time.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    @contextmanager
    def _transaction(self, write: bool = True) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open link database: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.commit()
        except sqlite3.OperationalError as exc:
            conn.rollback()
            if "locked" in str(exc):
                raise ConflictError("Link store is busy, try again.") from exc
            logger.error("Link store failure", exc_info=True)
            raise StorageError(f"Link store failure: {exc}") from exc
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Link store failure", exc_info=True)
            raise StorageError(f"Link store failure: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS account_links (
                    game_account_name TEXT PRIMARY KEY,
                    identity_id TEXT NOT NULL UNIQUE
                )
                """
            )

    @staticmethod
    def _name_for(conn: sqlite3.Connection, identity_id: str) -> Optional[str]:
        row = conn.execute(
            "SELECT game_account_name FROM account_links WHERE identity_id = ?",
            (identity_id,),
        ).fetchone()
        return row[0] if row else None

    @staticmethod
    def _identity_for(conn: sqlite3.Connection, game_account_name: str) -> Optional[str]:
        row = conn.execute(
            "SELECT identity_id FROM account_links WHERE game_account_name = ?",
            (game_account_name,),
        ).fetchone()
        return row[0] if row else None

    def create_link(self, game_account_name: str, identity_id: str) -> Link:
        with self._transaction() as conn:
            existing_name = self._name_for(conn, identity_id)
            if existing_name is not None:
                raise DuplicateLinkError(
                    game_account_name, identity_id, existing_name=existing_name
                )

            existing_identity = self._identity_for(conn, game_account_name)
            if existing_identity is not None:
                raise DuplicateLinkError(
                    game_account_name, identity_id, existing_identity=existing_identity
                )

            try:
                conn.execute(
                    """
                    INSERT INTO account_links (game_account_name, identity_id)
                    VALUES (?, ?)
                    """,
                    (game_account_name, identity_id),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateLinkError(game_account_name, identity_id) from exc

        return Link(game_account_name=game_account_name, identity_id=identity_id)

    def remove_link(self, identity_id: str) -> str:
        with self._transaction() as conn:
            name = self._name_for(conn, identity_id)
            if name is None:
                raise NotLinkedError(identity_id=identity_id)
            conn.execute("DELETE FROM account_links WHERE identity_id = ?", (identity_id,))
        return name

    def find_by_name(self, game_account_name: str) -> Optional[str]:
        with self._transaction(write=False) as conn:
            return self._identity_for(conn, game_account_name)

    def find_by_identity(self, identity_id: str) -> Optional[str]:
        with self._transaction(write=False) as conn:
            return self._name_for(conn, identity_id)
