from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from application.ranking import DEFAULT_LEADERBOARD_LIMIT, build_leaderboard, build_profile
from domain.errors import ConflictError, InvalidQueryError, NotLinkedError, PlayerNotFoundError
from domain.models import Link, PlayerSummary, TierRecord
from domain.repositories import LedgerRepository, LinkRepository

logger = logging.getLogger(__name__)

# Largest value the INTEGER points column holds on every backend.
MAX_POINTS = 2**31 - 1


@dataclass
class ExternalContext:
    """
    Information about the caller from the chat platform.

    The application layer never depends on concrete SDK types; it only sees
    this small context object. Privilege checks happen in the gateway.
    """

    provider: str
    provider_user_id: str
    display_name: str


@dataclass
class WhoisResult:
    game_account_name: str
    identity_id: str


def _require_text(value: Optional[str], what: str) -> str:
    if value is None or not value.strip():
        raise InvalidQueryError(f"{what} must not be empty.")
    return value.strip()


def link_account(
    external_ctx: ExternalContext,
    game_account_name: str,
    link_repo: LinkRepository,
) -> Link:
    """Link the caller's chat identity to a game account name."""

    name = _require_text(game_account_name, "Username")
    link = link_repo.create_link(name, external_ctx.provider_user_id)
    logger.info(
        "Linked %s to %s identity %s (%s)",
        link.game_account_name,
        external_ctx.provider,
        link.identity_id,
        external_ctx.display_name,
    )
    return link


def unlink_account(external_ctx: ExternalContext, link_repo: LinkRepository) -> str:
    """Remove the caller's link and return the name that was unlinked."""

    name = link_repo.remove_link(external_ctx.provider_user_id)
    logger.info("Unlinked %s from %s identity %s", name, external_ctx.provider, external_ctx.provider_user_id)
    return name


def whois(
    link_repo: LinkRepository,
    identity_id: Optional[str] = None,
    game_account_name: Optional[str] = None,
) -> WhoisResult:
    """
    Resolve a link in either direction.

    When both inputs are supplied the lookup by game account name wins and
    `identity_id` is ignored.
    """

    if game_account_name:
        found_identity = link_repo.find_by_name(game_account_name)
        if found_identity is None:
            raise NotLinkedError(game_account_name=game_account_name)
        return WhoisResult(game_account_name=game_account_name, identity_id=found_identity)

    if identity_id:
        found_name = link_repo.find_by_identity(identity_id)
        if found_name is None:
            raise NotLinkedError(identity_id=identity_id)
        return WhoisResult(game_account_name=found_name, identity_id=identity_id)

    raise InvalidQueryError("Provide a user or a game username.")


def update_tier(
    username: str,
    discipline_name: str,
    tier_code: str,
    points: int,
    ledger_repo: LedgerRepository,
) -> TierRecord:
    """
    Record a player's tier and points in one discipline.

    A `ConflictError` from the store is retried once; a second conflict
    propagates to the caller.
    """

    username = _require_text(username, "Username")
    discipline_name = _require_text(discipline_name, "Kit")
    tier_code = _require_text(tier_code, "Tier")
    if points < 0:
        raise InvalidQueryError("Points must not be negative.")
    if points > MAX_POINTS:
        raise InvalidQueryError(f"Points must not exceed {MAX_POINTS}.")

    try:
        record = ledger_repo.upsert_tier(username, discipline_name, tier_code, points)
    except ConflictError:
        logger.warning(
            "Conflict while updating %s/%s, retrying once", username, discipline_name
        )
        record = ledger_repo.upsert_tier(username, discipline_name, tier_code, points)

    logger.info(
        "Tier updated: %s %s -> %s (%d pts)", username, discipline_name, tier_code, points
    )
    return record


def get_leaderboard(
    ledger_repo: LedgerRepository,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
) -> List[PlayerSummary]:
    rows = ledger_repo.fetch_ledger_rows()
    logger.debug("Building leaderboard from %d rows (limit=%d)", len(rows), limit)
    return build_leaderboard(rows, limit)


def get_profile(username: str, ledger_repo: LedgerRepository) -> PlayerSummary:
    """Aggregate one player's kits; raises `PlayerNotFoundError` if unranked."""

    username = _require_text(username, "Username")
    rows = ledger_repo.get_player_ledger(username)
    return build_profile(username, rows)


def search_player(query: str, ledger_repo: LedgerRepository) -> str:
    """
    Find a player's stored username.

    An exact match wins; otherwise the first case-insensitive match is used.
    """

    query = _require_text(query, "Username")
    player = ledger_repo.get_player(query)
    if player is not None:
        return player.username
    username = ledger_repo.find_username(query)
    if username is None:
        raise PlayerNotFoundError(query)
    return username


def seed_disciplines(names: List[str], ledger_repo: LedgerRepository) -> None:
    for name in names:
        ledger_repo.add_discipline(name)
    logger.info("Disciplines available: %s", ", ".join(names))
