# helpcast/infra/pg_helper_pool_repo_async.py
"""
Read-only helper pool query.

Helper profiles are owned by the helper service; this module only
projects them into HelperCandidate.  The bounding box narrows the
scan; exact great-circle distance is computed by the eligibility filter.
"""
from __future__ import annotations

from typing import Optional

from helpcast.core.broadcast.domain import HelperCandidate
from helpcast.core.broadcast.geo import bounding_box
from helpcast.infra.db_resilience_async import retry_on_transient_error, safe_db_conn
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)

_BASE_QUERY = """
    SELECT h.id, h.user_id, p.full_name, h.service_categories, h.service_radius_km,
           h.current_location_lat, h.current_location_lng, h.is_online, h.is_on_job
    FROM helper_profiles h
    LEFT JOIN profiles p ON p.id = h.user_id
    WHERE h.is_approved
      AND h.verification_status = 'approved'
      AND h.is_online
      AND NOT h.is_on_job
"""


def _row_to_candidate(row) -> HelperCandidate:
    return HelperCandidate(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        display_name=row["full_name"],
        service_categories=tuple(row["service_categories"] or ()),
        service_radius_km=row["service_radius_km"],
        latitude=row["current_location_lat"],
        longitude=row["current_location_lng"],
        is_online=row["is_online"],
        is_on_job=row["is_on_job"],
    )


class AsyncPostgresHelperPoolRepository:
    @retry_on_transient_error(max_retries=3)
    async def load_available(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_km: Optional[float] = None,
    ) -> list[HelperCandidate]:
        async with safe_db_conn() as conn:
            if latitude is not None and longitude is not None and radius_km:
                min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, radius_km)
                rows = await conn.fetch(
                    _BASE_QUERY
                    + """
                      AND h.current_location_lat BETWEEN $1 AND $2
                      AND h.current_location_lng BETWEEN $3 AND $4
                    """,
                    min_lat,
                    max_lat,
                    min_lon,
                    max_lon,
                )
            else:
                rows = await conn.fetch(_BASE_QUERY)

        candidates = [_row_to_candidate(row) for row in rows]
        logger.debug(f"Helper pool loaded: {len(candidates)} available")
        return candidates
