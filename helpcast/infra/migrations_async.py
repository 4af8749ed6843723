# helpcast/infra/migrations_async.py
"""
SQL migrations from ``helpcast/infra/sql``, applied in filename order.

Each file runs in its own transaction together with its
``schema_migrations`` row.  A session-level advisory lock serializes
runners started concurrently by several instances.
"""
from __future__ import annotations

from pathlib import Path

from helpcast.infra.db_resilience_async import safe_db_conn
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)

# Arbitrary constant shared by every helpcast migration runner
MIGRATION_LOCK_ID = 7_346_201

SQL_DIR = Path(__file__).resolve().parent / "sql"


def migration_files(sql_dir: Path = SQL_DIR) -> list[Path]:
    return sorted(p for p in sql_dir.glob("*.sql") if p.is_file())


async def apply_migrations(sql_dir: Path = SQL_DIR) -> dict:
    """
    Apply every migration not yet recorded.

    Returns:
        {"ok": True, "applied": [filenames applied now], "count": int}
    """
    files = migration_files(sql_dir)
    applied_now: list[str] = []

    async with safe_db_conn() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
        try:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations(
                  version text PRIMARY KEY,
                  applied_at timestamptz NOT NULL DEFAULT now()
                )
                """
            )
            done = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}

            for path in files:
                if path.name in done:
                    continue
                logger.info(f"Applying migration: {path.name}")
                async with conn.transaction():
                    await conn.execute(path.read_text(encoding="utf-8"))
                    await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", path.name)
                applied_now.append(path.name)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    logger.info(f"Migrations complete: {len(applied_now)} applied, {len(files)} known")
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}
