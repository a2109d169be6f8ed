"""
Delete refresh tokens and reset codes past their retention window.

Meant to run from cron or a scheduled job:

    python -m scripts.purge_expired
"""

import asyncio

from src.config import AuthConfig, get_settings
from src.database import async_session_maker, close_db
from src.kernel.identity.identity_service import build_identity_service
from src.kernel.notifications import EmailNotifier
from src.logging_config import configure_logging, get_logger

logger = get_logger(__name__)


async def main() -> None:
    settings = get_settings()
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )
    identity = build_identity_service(
        AuthConfig.from_settings(settings),
        async_session_maker,
        EmailNotifier.from_settings(settings),
    )
    try:
        tokens = await identity.ledger.purge_expired()
        codes = await identity.reset_flow.purge_expired()
        logger.info("Purge finished", extra={"refresh_tokens": tokens, "reset_codes": codes})
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
