# helpcast/core/broadcast/matching.py
"""
Helper eligibility: which helpers get offered a request.

Two predicates decide a strict match:

* distance: ``haversine_km(request, helper) <= min(default_radius, helper radius)``
* category: ``TolerantCategoryMatch`` (see below)

If the strict set is empty while at least one helper passed the distance
check, the filter degrades to proximity only: nearest ``fallback_limit``
helpers within ``fallback_radius_km``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol, Sequence

from helpcast.core.broadcast.domain import Category, HelperCandidate, HelperMatch
from helpcast.core.broadcast.geo import haversine_km
from helpcast.core.broadcast.ports import HelperPoolReader
from helpcast.infra.logging_config import get_logger, mask_coordinates

logger = get_logger(__name__)

DEFAULT_RADIUS_KM = 15.0
FALLBACK_RADIUS_KM = 25.0
FALLBACK_LIMIT = 5


# ---------------------------------------------------------------------------
# Category match policy
# ---------------------------------------------------------------------------

class CategoryMatchPolicy(Protocol):
    def matches(self, tags: Iterable[str], category: Category) -> bool: ...


class TolerantCategoryMatch:
    """
    Tag-vs-category test that tolerates loose helper tagging.

    A helper tag matches when any of these hold:
        1. tag == category id
        2. tag equals the slug (case-insensitive)
        3. tag contains the slug, or the slug contains the tag
        4. tag contains the name, or the name contains the tag
        5. tag contains the first word of the name

    Short tags (e.g. ``"ac"``) can match unrelated names through rule 3/4.
    """

    def matches(self, tags: Iterable[str], category: Category) -> bool:
        return any(self.tag_matches(tag, category) for tag in tags)

    @staticmethod
    def tag_matches(tag: str, category: Category) -> bool:
        if not tag:
            return False
        if tag == category.id:
            return True

        t = tag.strip().lower()
        if not t:
            return False

        slug = (category.slug or "").strip().lower()
        if slug:
            if t == slug or slug in t or t in slug:
                return True

        name = (category.name or "").strip().lower()
        if name:
            if name in t or t in name:
                return True
            first_word = name.split()[0]
            if first_word and first_word in t:
                return True

        return False


# ---------------------------------------------------------------------------
# Eligibility filter
# ---------------------------------------------------------------------------

@dataclass
class MatchResult:
    matches: list[HelperMatch] = field(default_factory=list)
    pool_size: int = 0
    within_radius: int = 0
    fallback_used: bool = False

    @property
    def mode(self) -> str:
        if not self.matches:
            return "none"
        return "fallback" if self.fallback_used else "strict"

    def describe(self) -> str:
        """Selected helpers as ``name (km)`` in order, for debug logs."""
        return ", ".join(
            f"{m.helper.display_name or m.helper.user_id[:8]} ({m.distance_km:.1f} km)" for m in self.matches
        )


class EligibilityFilter:
    """Select helpers to notify for one request."""

    def __init__(
        self,
        pool: HelperPoolReader,
        *,
        policy: Optional[CategoryMatchPolicy] = None,
        default_radius_km: float = DEFAULT_RADIUS_KM,
        fallback_radius_km: float = FALLBACK_RADIUS_KM,
        fallback_limit: int = FALLBACK_LIMIT,
    ):
        self._pool = pool
        self._policy = policy or TolerantCategoryMatch()
        self._default_radius_km = default_radius_km
        self._fallback_radius_km = fallback_radius_km
        self._fallback_limit = fallback_limit

    async def find_helpers(
        self,
        category: Category,
        latitude: Optional[float],
        longitude: Optional[float],
    ) -> MatchResult:
        query_radius = max(self._default_radius_km, self._fallback_radius_km)
        if latitude is not None and longitude is not None:
            candidates = await self._pool.load_available(latitude, longitude, query_radius)
        else:
            candidates = await self._pool.load_available()

        result = self.select(candidates, category, latitude, longitude)
        logger.info(
            f"Helper matching: category={category.name}, at={mask_coordinates(latitude, longitude)}, "
            f"pool={result.pool_size}, within_radius={result.within_radius}, "
            f"selected={len(result.matches)}, mode={result.mode}"
        )
        if result.matches:
            logger.debug(f"Selected helpers: {result.describe()}")
        return result

    def select(
        self,
        candidates: Sequence[HelperCandidate],
        category: Category,
        latitude: Optional[float],
        longitude: Optional[float],
    ) -> MatchResult:
        """Pure selection over an already loaded pool."""
        available = [h for h in candidates if h.is_online and not h.is_on_job]
        result = MatchResult(pool_size=len(available))

        if not available or latitude is None or longitude is None:
            return result

        located = [
            HelperMatch(helper=h, distance_km=haversine_km(latitude, longitude, h.latitude, h.longitude))
            for h in available
            if h.has_location
        ]

        within = [m for m in located if m.distance_km <= self._radius_for(m.helper)]
        result.within_radius = len(within)

        strict = [m for m in within if self._policy.matches(m.helper.service_categories, category)]
        if strict:
            result.matches = sorted(strict, key=lambda m: m.distance_km)
            return result

        if within:
            nearby = [m for m in located if m.distance_km <= self._fallback_radius_km]
            nearby.sort(key=lambda m: m.distance_km)
            result.matches = nearby[: self._fallback_limit]
            result.fallback_used = True
            logger.warning(
                f"No category match for {category.name} among {len(within)} nearby helpers; "
                f"falling back to nearest {len(result.matches)}"
            )

        return result

    def _radius_for(self, helper: HelperCandidate) -> float:
        radius = helper.service_radius_km
        if radius is None or radius <= 0:
            return self._default_radius_km
        return min(self._default_radius_km, radius)
