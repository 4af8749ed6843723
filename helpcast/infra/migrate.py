#!/usr/bin/env python3
# helpcast/infra/migrate.py
"""
Apply database migrations, separately from application startup:

    python -m helpcast.infra.migrate
"""
import asyncio
import sys

from helpcast.config import settings
from helpcast.infra.db_async import close_pool, init_pool
from helpcast.infra.logging_config import get_logger, setup_logging
from helpcast.infra.migrations_async import apply_migrations

setup_logging(level=settings.log_level, use_json=settings.is_production)
logger = get_logger(__name__)


async def main() -> int:
    logger.info(f"Running migrations: env={settings.app_env}")
    await init_pool()
    try:
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"Migration failed: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    for name in result["applied"]:
        logger.info(f"  applied {name}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
