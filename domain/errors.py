"""
Error kinds raised by the linking and ranking core.

Every error carries a human-readable `message` that the gateway layer can
show to users as-is, plus structured `details` for logging. Only storage
and conflict errors are retryable; everything else is terminal for the
current request.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RankingError(Exception):
    """Base class for all linking/ledger errors."""

    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.error_code = error_code or self.__class__.__name__
        self.is_retryable = self.DEFAULT_RETRYABLE
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "is_retryable": self.is_retryable,
        }


class DuplicateLinkError(RankingError):
    """
    Raised when a link would break the one-to-one mapping.

    Either the identity is already linked to some name, or the name is
    already linked to some identity. The conflicting mapping is reported.
    """

    def __init__(
        self,
        game_account_name: str,
        identity_id: str,
        existing_name: Optional[str] = None,
        existing_identity: Optional[str] = None,
    ) -> None:
        self.game_account_name = game_account_name
        self.identity_id = identity_id
        self.existing_name = existing_name
        self.existing_identity = existing_identity

        if existing_name is not None:
            message = f"You're already linked to {existing_name}."
        else:
            message = f"{game_account_name} is already linked."

        super().__init__(
            message,
            details={
                "game_account_name": game_account_name,
                "identity_id": identity_id,
                "existing_name": existing_name,
                "existing_identity": existing_identity,
            },
        )


class NotLinkedError(RankingError):
    def __init__(
        self,
        identity_id: Optional[str] = None,
        game_account_name: Optional[str] = None,
    ) -> None:
        self.identity_id = identity_id
        self.game_account_name = game_account_name

        if game_account_name is not None:
            message = f"No link found for {game_account_name}."
        else:
            message = "No linked game account for this user."

        super().__init__(
            message,
            details={"identity_id": identity_id, "game_account_name": game_account_name},
        )


class InvalidQueryError(RankingError):
    """Raised for missing or out-of-range arguments."""


class DisciplineNotFoundError(RankingError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Kit {name} not found.", details={"discipline": name})


class PlayerNotFoundError(RankingError):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Player {username} not found.", details={"username": username})


class StorageError(RankingError):
    """The backing store is unavailable or failed unexpectedly."""

    DEFAULT_RETRYABLE = True


class ConflictError(RankingError):
    """A concurrent write was detected; the operation may be retried."""

    DEFAULT_RETRYABLE = True


class ConfigurationError(RankingError):
    """Invalid or missing startup configuration."""
