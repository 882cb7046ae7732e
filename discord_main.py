import logging

from application.services import seed_disciplines
from domain.repositories import LedgerRepository, LinkRepository
from infrastructure.db.ledger_repository_sqlite import SqliteLedgerRepository
from infrastructure.db.link_repository_json import JsonLinkRepository
from infrastructure.db.link_repository_sqlite import SqliteLinkRepository
from infrastructure.logging_config import configure_logging
from infrastructure.settings import Settings, load_settings
from interfaces.discord.handlers import create_discord_bot

logger = logging.getLogger(__name__)


def build_ledger_repository(settings: Settings) -> LedgerRepository:
    if settings.db_backend == "postgres":
        # psycopg2 is only required for the postgres backend.
        from infrastructure.db.ledger_repository_postgres import PostgresLedgerRepository

        return PostgresLedgerRepository({"dsn": settings.database_url})
    return SqliteLedgerRepository(settings.db_path)


def build_link_repository(settings: Settings) -> LinkRepository:
    if settings.link_backend == "sqlite":
        return SqliteLinkRepository(settings.db_path)
    return JsonLinkRepository(settings.links_path)


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)

    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    ledger_repo = build_ledger_repository(settings)
    link_repo = build_link_repository(settings)
    seed_disciplines(settings.kits, ledger_repo)

    logger.info(
        "Starting bot (ledger=%s, links=%s)", settings.db_backend, settings.link_backend
    )
    bot = create_discord_bot(link_repo, ledger_repo, settings)
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
