from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from application.ranking import DEFAULT_LEADERBOARD_LIMIT
from domain.errors import ConfigurationError

DEFAULT_KITS = [
    "Mace",
    "Vanilla (Crystals)",
    "Sword",
    "Axe",
    "NethPOT",
    "SMP",
    "Lifesteal",
    "CartPVP",
    "UHC",
]

DB_BACKENDS = ("sqlite", "postgres")
LINK_BACKENDS = ("json", "sqlite")


@dataclass(frozen=True)
class Settings:
    discord_token: Optional[str] = None
    guild_id: Optional[int] = None
    tier_log_channel_id: Optional[int] = None
    db_backend: str = "sqlite"
    db_path: str = "ranktiers.db"
    database_url: Optional[str] = None
    link_backend: str = "json"
    links_path: str = os.path.join("data", "links.json")
    leaderboard_limit: int = DEFAULT_LEADERBOARD_LIMIT
    kits: List[str] = field(default_factory=lambda: list(DEFAULT_KITS))
    log_level: str = "INFO"


def _optional_int(environ: Mapping[str, str], key: str) -> Optional[int]:
    raw = environ.get(key, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}.") from exc


def _choice(environ: Mapping[str, str], key: str, default: str, allowed: tuple) -> str:
    value = environ.get(key, default).strip().lower() or default
    if value not in allowed:
        raise ConfigurationError(f"{key} must be one of {', '.join(allowed)}, got {value!r}.")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build `Settings` from environment variables.

    When `environ` is omitted, a `.env` file is loaded first and the process
    environment is used.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ

    db_backend = _choice(environ, "DB_BACKEND", "sqlite", DB_BACKENDS)
    database_url = environ.get("DATABASE_URL") or None
    if db_backend == "postgres" and not database_url:
        raise ConfigurationError("DATABASE_URL is required when DB_BACKEND=postgres.")

    limit = _optional_int(environ, "LEADERBOARD_LIMIT")
    if limit is None:
        limit = DEFAULT_LEADERBOARD_LIMIT
    elif limit <= 0:
        raise ConfigurationError("LEADERBOARD_LIMIT must be greater than zero.")

    kits_raw = environ.get("KITS")
    if kits_raw:
        kits = [name.strip() for name in kits_raw.split(",") if name.strip()]
    else:
        kits = list(DEFAULT_KITS)

    return Settings(
        discord_token=environ.get("DISCORD_TOKEN") or None,
        guild_id=_optional_int(environ, "GUILD_ID"),
        tier_log_channel_id=_optional_int(environ, "TIER_LOG_CHANNEL"),
        db_backend=db_backend,
        db_path=environ.get("DB_PATH") or "ranktiers.db",
        database_url=database_url,
        link_backend=_choice(environ, "LINK_BACKEND", "json", LINK_BACKENDS),
        links_path=environ.get("LINKS_PATH") or os.path.join("data", "links.json"),
        leaderboard_limit=limit,
        kits=kits,
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
    )
