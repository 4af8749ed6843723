# helpcast/core/broadcast/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional


BROADCAST_EXPIRY = timedelta(minutes=30)


# ============================================================================
# STATUS ENUMS
# ============================================================================

class RequestStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"


class BroadcastStatus(str, Enum):
    BROADCASTING = "broadcasting"


class DispatchState(str, Enum):
    """Dispatch-pending marker stored on the request."""
    PENDING = "pending"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class UrgencyLevel(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"

    @classmethod
    def from_inbound(cls, urgency: Optional[str]) -> "UrgencyLevel":
        """Inbound ``emergency`` becomes ``urgent``; anything else is ``normal``."""
        return cls.URGENT if urgency == "emergency" else cls.NORMAL


# ============================================================================
# CATALOG / HELPER PROJECTIONS
# ============================================================================

@dataclass(frozen=True)
class Category:
    id: str
    name: str
    slug: Optional[str] = None


@dataclass(frozen=True)
class HelperCandidate:
    """Read-only projection of a helper profile. Never written back."""

    id: str
    user_id: str
    display_name: Optional[str] = None
    service_categories: tuple[str, ...] = ()
    service_radius_km: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_online: bool = True
    is_on_job: bool = False

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class HelperMatch:
    """A helper selected by one matching pass, with the distance computed for it."""

    helper: HelperCandidate
    distance_km: float


# ============================================================================
# INTAKE
# ============================================================================

@dataclass
class BroadcastInput:
    """Everything the caller submits when creating a broadcast request."""

    category_token: Optional[str] = None
    category_name: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    flat_number: Optional[str] = None
    floor: Optional[str] = None
    landmark: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    images: list[str] = field(default_factory=list)
    videos: list[Any] = field(default_factory=list)
    ai_analysis: dict[str, Any] = field(default_factory=dict)
    selected_tier: Optional[str] = None
    estimated_price: Optional[float] = None
    estimated_duration: Optional[Any] = None
    confidence: Optional[float] = None
    urgency: Optional[str] = None
    problem_duration: Optional[str] = None
    error_code: Optional[str] = None
    preferred_time: Optional[str] = None
    payment_method: str = "cash"
    helper_brings: list[str] = field(default_factory=list)
    customer_provides: list[str] = field(default_factory=list)
    work_overview: Optional[str] = None
    materials_needed: list[Any] = field(default_factory=list)


@dataclass
class ServiceRequest:
    """A service request record as written at intake."""

    id: str
    customer_id: str
    category_id: str
    title: str
    description: Optional[str]
    address_line1: Optional[str]
    address_line2: str
    landmark: Optional[str]
    service_address: str
    latitude: Optional[float]
    longitude: Optional[float]
    images: list[str]
    estimated_price: Optional[float]
    urgency_level: UrgencyLevel
    payment_method: str
    start_code: str
    end_code: str
    created_at: datetime
    broadcast_expires_at: datetime
    service_type_details: dict[str, Any] = field(default_factory=dict)
    status: RequestStatus = RequestStatus.OPEN
    broadcast_status: BroadcastStatus = BroadcastStatus.BROADCASTING
    dispatch_state: DispatchState = DispatchState.PENDING


@dataclass(frozen=True)
class IntakeResult:
    request_id: str
    message: str
    helpers_notified: int = 0


# ============================================================================
# BACKGROUND DISPATCH
# ============================================================================

@dataclass
class DispatchPlan:
    """
    Self-contained input for both background chains.

    Carries everything the dispatch pass and the media sideloader need so
    neither has to re-read the request or the requester profile.
    """

    request_id: str
    requester_id: str
    requester_name: str
    category: Category
    latitude: Optional[float]
    longitude: Optional[float]
    urgency: str
    estimated_price: Optional[float]
    address: Optional[str]
    description: Optional[str]
    images: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "category": {
                "id": self.category.id,
                "name": self.category.name,
                "slug": self.category.slug,
            },
            "latitude": self.latitude,
            "longitude": self.longitude,
            "urgency": self.urgency,
            "estimated_price": self.estimated_price,
            "address": self.address,
            "description": self.description,
            "images": list(self.images),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DispatchPlan":
        cat = payload["category"]
        return cls(
            request_id=payload["request_id"],
            requester_id=payload["requester_id"],
            requester_name=payload["requester_name"],
            category=Category(id=cat["id"], name=cat["name"], slug=cat.get("slug")),
            latitude=payload.get("latitude"),
            longitude=payload.get("longitude"),
            urgency=payload.get("urgency") or UrgencyLevel.NORMAL.value,
            estimated_price=payload.get("estimated_price"),
            address=payload.get("address"),
            description=payload.get("description"),
            images=list(payload.get("images") or []),
        )


@dataclass(frozen=True)
class BroadcastNotification:
    """Audit row: helper X was offered request Y."""

    request_id: str
    helper_id: str
    distance_km: float
    sent_at: datetime
    status: str = "sent"


@dataclass(frozen=True)
class Notification:
    """Cross-channel message record."""

    user_id: str
    request_id: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    channel: str = "push"
    status: str = "queued"


@dataclass(frozen=True)
class JobAlert:
    """Payload handed to the push-delivery collaborator."""

    helper_user_ids: list[str]
    request_id: str
    title: str
    description: str
    price: Optional[float]
    location: str
    customer_name: str
    urgency: str
    expires_in_seconds: int = 30


@dataclass(frozen=True)
class BroadcastStatusView:
    request_id: str
    customer_id: str
    dispatch_state: str
    helpers_notified: int
    broadcast_status: str
    broadcast_expires_at: datetime
