# helpcast/core/broadcast/intake.py
"""
Request intake: validate caller, resolve category, persist, schedule.

The handler returns as soon as the request row exists.  Helper discovery,
notification fan-out and media migration run later on the background
worker pool, so response latency does not depend on them.
"""
from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from helpcast.core.broadcast.categories import CategoryResolver
from helpcast.core.broadcast.domain import (
    BROADCAST_EXPIRY,
    BroadcastInput,
    Category,
    DispatchPlan,
    IntakeResult,
    ServiceRequest,
    UrgencyLevel,
)
from helpcast.core.broadcast.errors import AuthenticationError, RequestPersistenceError
from helpcast.core.broadcast.media import is_remote_url
from helpcast.core.broadcast.ports import DispatchScheduler, ProfileReader, RequestStore
from helpcast.infra.logging_config import LogContext, get_logger, mask_coordinates
from helpcast.infra.metrics import AppMetrics

logger = get_logger(__name__)

DEFAULT_REQUESTER_NAME = "A customer"
CODE_MIN = 100000
CODE_MAX = 999999


def generate_code() -> str:
    """Random 6-digit code in [100000, 999999]."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def generate_code_pair() -> tuple[str, str]:
    """Two distinct 6-digit codes (job start, job end)."""
    start = generate_code()
    end = generate_code()
    while end == start:
        end = generate_code()
    return start, end


def _address_line2(flat_number: Optional[str], floor: Optional[str]) -> str:
    floor_part = f", Floor: {floor}" if floor else ""
    return f"{flat_number or ''} {floor_part}".strip()


def _service_address(flat_number: Optional[str], address: Optional[str]) -> str:
    return f"{flat_number or ''}, {address or ''}".strip(", ").strip()


def _service_type_details(data: BroadcastInput) -> dict:
    return {
        "ai_analysis": data.ai_analysis or {},
        "pricing_tier": data.selected_tier,
        "estimated_duration": data.estimated_duration,
        "confidence": data.confidence,
        "problem_duration": data.problem_duration,
        "error_code": data.error_code,
        "preferred_time": data.preferred_time,
        "videos": data.videos or [],
        "helper_brings": data.helper_brings or [],
        "customer_provides": data.customer_provides or [],
        "work_overview": data.work_overview,
        "materials_needed": data.materials_needed or [],
    }


def build_service_request(
    *,
    request_id: str,
    customer_id: str,
    category: Category,
    data: BroadcastInput,
    now: datetime,
    expiry: timedelta = BROADCAST_EXPIRY,
) -> ServiceRequest:
    start_code, end_code = generate_code_pair()
    return ServiceRequest(
        id=request_id,
        customer_id=customer_id,
        category_id=category.id,
        title=f"{category.name} Service Required",
        description=data.description,
        address_line1=data.address,
        address_line2=_address_line2(data.flat_number, data.floor),
        landmark=data.landmark,
        service_address=_service_address(data.flat_number, data.address),
        latitude=data.latitude,
        longitude=data.longitude,
        images=list(data.images or []),
        estimated_price=data.estimated_price,
        urgency_level=UrgencyLevel.from_inbound(data.urgency),
        payment_method=data.payment_method or "cash",
        start_code=start_code,
        end_code=end_code,
        created_at=now,
        broadcast_expires_at=now + expiry,
        service_type_details=_service_type_details(data),
    )


class RequestIntakeHandler:
    def __init__(
        self,
        *,
        categories: CategoryResolver,
        requests: RequestStore,
        profiles: ProfileReader,
        scheduler: DispatchScheduler,
        broadcast_expiry: timedelta = BROADCAST_EXPIRY,
    ):
        self._categories = categories
        self._requests = requests
        self._profiles = profiles
        self._scheduler = scheduler
        self._broadcast_expiry = broadcast_expiry

    async def create_broadcast(
        self,
        requester_id: Optional[str],
        data: BroadcastInput,
        *,
        http_request_id: Optional[str] = None,
    ) -> IntakeResult:
        if not requester_id:
            raise AuthenticationError()

        log = LogContext(logger, request_id=http_request_id, user_id=requester_id)

        with AppMetrics.track_intake_time():
            requester_name = await self._requester_name(requester_id)
            category = await self._categories.resolve(data.category_token, data.category_name)

            request = build_service_request(
                request_id=str(uuid.uuid4()),
                customer_id=requester_id,
                category=category,
                data=data,
                now=datetime.now(timezone.utc),
                expiry=self._broadcast_expiry,
            )

            try:
                request_id = await self._requests.create(request)
            except Exception as exc:
                log.error(f"Failed to persist service request: {exc}", exc_info=True)
                AppMetrics.database_error(operation="create_service_request")
                raise RequestPersistenceError() from exc

        AppMetrics.request_created(urgency=request.urgency_level.value)
        log.info(
            f"Service request created: id={request_id[:8]}, category={category.name}, "
            f"at={mask_coordinates(data.latitude, data.longitude)}, images={len(request.images)}",
            extra={"service_request_id": request_id},
        )

        plan = DispatchPlan(
            request_id=request_id,
            requester_id=requester_id,
            requester_name=requester_name,
            category=category,
            latitude=data.latitude,
            longitude=data.longitude,
            urgency=request.urgency_level.value,
            estimated_price=data.estimated_price,
            address=data.address,
            description=data.description,
            images=list(request.images),
        )
        self._scheduler.schedule_dispatch(plan)
        if any(not is_remote_url(item) for item in plan.images):
            self._scheduler.schedule_media_sideload(plan)

        return IntakeResult(
            request_id=request_id,
            message="Request created! Finding qualified helpers near you.",
            helpers_notified=0,
        )

    async def _requester_name(self, requester_id: str) -> str:
        try:
            name = await self._profiles.get_display_name(requester_id)
        except Exception as exc:
            logger.warning(f"Requester profile lookup failed, using default name: {exc}")
            return DEFAULT_REQUESTER_NAME
        return name or DEFAULT_REQUESTER_NAME
