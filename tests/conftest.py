# tests/conftest.py
"""Pytest configuration, in-memory collaborators and fixtures"""
from __future__ import annotations

import itertools
from typing import Optional, Sequence

import pytest

from helpcast.core.broadcast.domain import (
    BroadcastInput,
    BroadcastNotification,
    BroadcastStatusView,
    Category,
    DispatchPlan,
    DispatchState,
    HelperCandidate,
    JobAlert,
    Notification,
    ServiceRequest,
)
from helpcast.infra.metrics import get_metrics_collector

# Request location used across tests (central Bengaluru)
CENTER_LAT = 12.9716
CENTER_LON = 77.5946

# ~1.11 km per 0.01 degree of latitude
KM_PER_0_01_LAT = 1.112


# ============================================================================
# In-memory collaborators
# ============================================================================

class FakeCategoryStore:
    def __init__(self, categories: Sequence[Category] = (), *, fail_create: bool = False):
        self.categories = list(categories)
        self.fail_create = fail_create
        self.created: list[Category] = []
        self._ids = itertools.count(1)

    async def find_by_name(self, name: str) -> Optional[Category]:
        for c in self.categories:
            if c.name.lower() == name.lower():
                return c
        return None

    async def find_by_name_fragment(self, fragment: str) -> Optional[Category]:
        for c in self.categories:
            if fragment.lower() in c.name.lower():
                return c
        return None

    async def find_any(self) -> Optional[Category]:
        return self.categories[0] if self.categories else None

    async def create(self, name: str, slug: str) -> Category:
        if self.fail_create:
            raise RuntimeError("insert failed")
        category = Category(id=f"cat-{next(self._ids)}", name=name, slug=slug)
        self.categories.append(category)
        self.created.append(category)
        return category


class FakeProfileReader:
    def __init__(self, names: dict[str, str] | None = None, *, fail: bool = False):
        self.names = names or {}
        self.fail = fail

    async def get_display_name(self, user_id: str) -> Optional[str]:
        if self.fail:
            raise ConnectionError("profiles unavailable")
        return self.names.get(user_id)


class FakeRequestStore:
    def __init__(self, *, fail_create: bool = False, fail_mark: bool = False):
        self.fail_create = fail_create
        self.fail_mark = fail_mark
        self.created: dict[str, ServiceRequest] = {}
        self.image_updates: list[tuple[str, list[str]]] = []
        self.marks: list[tuple[str, DispatchState, int]] = []
        self.stale: list[DispatchPlan] = []
        self.claim_calls: list[tuple[int, int]] = []
        self.statuses: dict[str, BroadcastStatusView] = {}

    async def create(self, request: ServiceRequest) -> str:
        if self.fail_create:
            raise ConnectionError("database down")
        self.created[request.id] = request
        return request.id

    async def update_images(self, request_id: str, images: list[str]) -> None:
        self.image_updates.append((request_id, list(images)))

    async def mark_dispatch(self, request_id: str, state: DispatchState, helpers_notified: int) -> None:
        if self.fail_mark:
            raise ConnectionError("database down")
        self.marks.append((request_id, state, helpers_notified))

    async def claim_stale_pending(self, older_than_seconds: int, limit: int) -> list[DispatchPlan]:
        self.claim_calls.append((older_than_seconds, limit))
        claimed, self.stale = self.stale[:limit], self.stale[limit:]
        return claimed

    async def get_status(self, request_id: str) -> Optional[BroadcastStatusView]:
        return self.statuses.get(request_id)


class FakeHelperPool:
    def __init__(self, helpers: Sequence[HelperCandidate] = (), *, error: Exception | None = None):
        self.helpers = list(helpers)
        self.error = error
        self.calls: list[tuple] = []

    async def load_available(self, latitude=None, longitude=None, radius_km=None) -> list[HelperCandidate]:
        self.calls.append((latitude, longitude, radius_km))
        if self.error is not None:
            raise self.error
        return list(self.helpers)


class FakeNotificationWriter:
    def __init__(self, *, fail_broadcasts: bool = False, fail_notifications: bool = False):
        self.fail_broadcasts = fail_broadcasts
        self.fail_notifications = fail_notifications
        self.broadcasts: list[BroadcastNotification] = []
        self.notifications: list[Notification] = []

    async def insert_broadcasts(self, rows: Sequence[BroadcastNotification]) -> int:
        if self.fail_broadcasts:
            raise ConnectionError("broadcast insert failed")
        self.broadcasts.extend(rows)
        return len(rows)

    async def insert_notifications(self, rows: Sequence[Notification]) -> int:
        if self.fail_notifications:
            raise ConnectionError("notification insert failed")
        self.notifications.extend(rows)
        return len(rows)


class FakePushDispatcher:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.alerts: list[JobAlert] = []

    async def send_job_alert(self, alert: JobAlert) -> dict:
        if self.fail:
            raise ConnectionError("push service unreachable")
        self.alerts.append(alert)
        return {"sent": len(alert.helper_user_ids)}


class FakeUploader:
    def __init__(self, *, fail_indices: Sequence[int] = ()):
        self.fail_indices = set(fail_indices)
        self.uploads: dict[str, tuple[bytes, str]] = {}
        self._calls = 0

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        index = self._calls
        self._calls += 1
        if index in self.fail_indices:
            raise ConnectionError("storage unavailable")
        self.uploads[key] = (data, content_type)
        return f"https://cdn.example.com/{key}"


class RecordingScheduler:
    def __init__(self):
        self.dispatched: list[DispatchPlan] = []
        self.sideloads: list[DispatchPlan] = []

    def schedule_dispatch(self, plan: DispatchPlan) -> None:
        self.dispatched.append(plan)

    def schedule_media_sideload(self, plan: DispatchPlan) -> None:
        self.sideloads.append(plan)


# ============================================================================
# Builders
# ============================================================================

def make_helper(
    idx: int,
    *,
    km_north: float = 1.0,
    categories: Sequence[str] = ("plumbing",),
    radius_km: Optional[float] = 15.0,
    is_online: bool = True,
    is_on_job: bool = False,
    located: bool = True,
) -> HelperCandidate:
    """Helper placed ``km_north`` km due north of the request location."""
    return HelperCandidate(
        id=f"helper-{idx}",
        user_id=f"user-{idx}",
        display_name=f"Helper {idx}",
        service_categories=tuple(categories),
        service_radius_km=radius_km,
        latitude=CENTER_LAT + (km_north / KM_PER_0_01_LAT) * 0.01 if located else None,
        longitude=CENTER_LON if located else None,
        is_online=is_online,
        is_on_job=is_on_job,
    )


def make_plan(**overrides) -> DispatchPlan:
    fields = dict(
        request_id="11111111-2222-3333-4444-555555555555",
        requester_id="customer-1",
        requester_name="Asha",
        category=Category(id="cat-plumbing", name="Plumbing", slug="plumbing"),
        latitude=CENTER_LAT,
        longitude=CENTER_LON,
        urgency="normal",
        estimated_price=499.0,
        address="12 MG Road",
        description="Kitchen sink is leaking",
        images=[],
    )
    fields.update(overrides)
    return DispatchPlan(**fields)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-global; isolate every test"""
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def plumbing():
    return Category(id="cat-plumbing", name="Plumbing", slug="plumbing")


@pytest.fixture
def plan():
    return make_plan()


@pytest.fixture
def broadcast_input():
    return BroadcastInput(
        category_token="plumbing",
        category_name="Plumbing",
        description="Kitchen sink is leaking",
        address="12 MG Road",
        flat_number="4B",
        floor="2",
        landmark="Near metro",
        latitude=CENTER_LAT,
        longitude=CENTER_LON,
        estimated_price=499.0,
        urgency="emergency",
    )
