# helpcast/core/broadcast/categories.py
"""
Category resolution for inbound broadcast requests.

The client sends either a legacy slug (``plumbing``, ``ac_repair`` …) or a
newer catalog slug plus a display name.  Resolution never fails for lack
of a match: it degrades from exact name, to first-word match, to any
existing category, and only creates a row when the table is empty.
"""
from __future__ import annotations

from typing import Optional

from helpcast.core.broadcast.domain import Category
from helpcast.core.broadcast.errors import CategoryPersistenceError
from helpcast.core.broadcast.ports import CategoryStore
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import AppMetrics

logger = get_logger(__name__)

DEFAULT_CATEGORY_TOKEN = "other"
DEFAULT_CATEGORY_NAME = "Other"

# Legacy slug -> canonical category name
CATEGORY_NAMES: dict[str, str] = {
    "electrical": "Electrical",
    "plumbing": "Plumbing",
    "ac_repair": "AC & Appliance Repair",
    "carpentry": "Carpentry",
    "painting": "Painting",
    "cleaning": "Cleaning",
    "pest_control": "Pest Control",
    "home_repair": "Home Repair & Maintenance",
    "locksmith": "Locksmith",
    "gardening": "Gardening & Landscaping",
    "moving": "Moving & Packing",
    "other": DEFAULT_CATEGORY_NAME,
}


def mapped_category_name(token: Optional[str], display_name: Optional[str] = None) -> str:
    """Canonical name for a token: mapping table, then display name, then ``Other``."""
    if token and token in CATEGORY_NAMES:
        return CATEGORY_NAMES[token]
    if display_name and display_name.strip():
        return display_name.strip()
    return DEFAULT_CATEGORY_NAME


class CategoryResolver:
    """
    Resolve an inbound category token to a stored category.

    Order (first success wins):
        1. case-insensitive exact match on the mapped name
        2. case-insensitive match on the first word of the mapped name
        3. any existing category (last-resort reuse)
        4. create ``{name: mapped, slug: token}``
    """

    def __init__(self, store: CategoryStore):
        self._store = store

    async def resolve(self, token: Optional[str], display_name: Optional[str] = None) -> Category:
        token = (token or "").strip() or DEFAULT_CATEGORY_TOKEN
        name = mapped_category_name(token, display_name)

        category = await self._store.find_by_name(name)
        if category is not None:
            logger.debug(f"Category exact match: token={token} -> {category.name}")
            return category

        first_word = name.split()[0] if name.split() else name
        category = await self._store.find_by_name_fragment(first_word)
        if category is not None:
            logger.debug(f"Category partial match: token={token}, fragment={first_word} -> {category.name}")
            return category

        category = await self._store.find_any()
        if category is not None:
            logger.warning(
                f"No category matched token={token} (name={name}); reusing {category.name}"
            )
            return category

        try:
            category = await self._store.create(name=name, slug=token)
        except Exception as exc:
            logger.error(f"Failed to create category name={name}, slug={token}: {exc}", exc_info=True)
            raise CategoryPersistenceError() from exc

        AppMetrics.category_created()
        logger.info(f"Created category: id={category.id}, name={category.name}, slug={category.slug}")
        return category
