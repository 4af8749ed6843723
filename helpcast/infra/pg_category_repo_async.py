# helpcast/infra/pg_category_repo_async.py
"""
Async PostgreSQL service-category repository (asyncpg).
"""
from __future__ import annotations

from typing import Optional

from helpcast.core.broadcast.domain import Category
from helpcast.infra.db_resilience_async import retry_on_transient_error, safe_db_conn
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)


def _row_to_category(row) -> Category:
    return Category(id=str(row["id"]), name=row["name"], slug=row["slug"])


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class AsyncPostgresCategoryRepository:
    """Category lookups are case-insensitive; creation is a plain insert."""

    @retry_on_transient_error(max_retries=2)
    async def find_by_name(self, name: str) -> Optional[Category]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, name, slug FROM service_categories
                WHERE lower(name) = lower($1)
                ORDER BY created_at, id
                LIMIT 1
                """,
                name,
            )
            return _row_to_category(row) if row else None

    @retry_on_transient_error(max_retries=2)
    async def find_by_name_fragment(self, fragment: str) -> Optional[Category]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, name, slug FROM service_categories
                WHERE name ILIKE '%' || $1 || '%'
                ORDER BY created_at, id
                LIMIT 1
                """,
                _escape_like(fragment),
            )
            return _row_to_category(row) if row else None

    @retry_on_transient_error(max_retries=2)
    async def find_any(self) -> Optional[Category]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, slug FROM service_categories ORDER BY created_at, id LIMIT 1"
            )
            return _row_to_category(row) if row else None

    async def create(self, name: str, slug: str) -> Category:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO service_categories (name, slug)
                VALUES ($1, $2)
                RETURNING id, name, slug
                """,
                name,
                slug,
            )
            category = _row_to_category(row)
            logger.info(f"Service category created: id={category.id[:8]}, name={name}")
            return category
