from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from domain.errors import DuplicateLinkError, NotLinkedError, StorageError
from domain.models import Link
from domain.repositories import LinkRepository

logger = logging.getLogger(__name__)


class JsonLinkRepository(LinkRepository):
    """
    File-backed implementation of `LinkRepository`.

    The document on disk is a flat JSON object mapping game account name to
    identity ID, rewritten in full on every mutation. The in-memory copy is
    authoritative while the process runs; all mutations go through a single
    lock so check-then-write can't interleave, and the file is only ever a
    snapshot of that state.
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._by_name: Dict[str, str] = {}
        self._by_identity: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if not self._path.exists():
                self._write_snapshot({})
                return
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Could not load link store %s", self._path, exc_info=True)
            raise StorageError(f"Could not load link store: {exc}") from exc

        if not isinstance(data, dict):
            raise StorageError(f"Link store {self._path} is not a JSON object.")

        for name, identity_id in data.items():
            identity_id = str(identity_id)
            if identity_id in self._by_identity:
                # Keep the first mapping; a hand-edited file may repeat an ID.
                logger.warning(
                    "Ignoring duplicate link %s -> %s (already linked to %s)",
                    name,
                    identity_id,
                    self._by_identity[identity_id],
                )
                continue
            self._by_name[name] = identity_id
            self._by_identity[identity_id] = name

        logger.debug("Loaded %d links from %s", len(self._by_name), self._path)

    def _write_snapshot(self, data: Dict[str, str]) -> None:
        fd, tmp_path = tempfile.mkstemp(
            prefix=".links-", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _persist(self) -> None:
        try:
            self._write_snapshot(dict(self._by_name))
        except OSError as exc:
            logger.error("Could not write link store %s", self._path, exc_info=True)
            raise StorageError(f"Could not write link store: {exc}") from exc

    def create_link(self, game_account_name: str, identity_id: str) -> Link:
        with self._lock:
            existing_name = self._by_identity.get(identity_id)
            if existing_name is not None:
                raise DuplicateLinkError(
                    game_account_name, identity_id, existing_name=existing_name
                )

            existing_identity = self._by_name.get(game_account_name)
            if existing_identity is not None:
                raise DuplicateLinkError(
                    game_account_name, identity_id, existing_identity=existing_identity
                )

            self._by_name[game_account_name] = identity_id
            self._by_identity[identity_id] = game_account_name
            try:
                self._persist()
            except StorageError:
                del self._by_name[game_account_name]
                del self._by_identity[identity_id]
                raise

        return Link(game_account_name=game_account_name, identity_id=identity_id)

    def remove_link(self, identity_id: str) -> str:
        with self._lock:
            name = self._by_identity.get(identity_id)
            if name is None:
                raise NotLinkedError(identity_id=identity_id)

            del self._by_identity[identity_id]
            del self._by_name[name]
            try:
                self._persist()
            except StorageError:
                self._by_name[name] = identity_id
                self._by_identity[identity_id] = name
                raise

        return name

    def find_by_name(self, game_account_name: str) -> Optional[str]:
        with self._lock:
            return self._by_name.get(game_account_name)

    def find_by_identity(self, identity_id: str) -> Optional[str]:
        with self._lock:
            return self._by_identity.get(identity_id)
