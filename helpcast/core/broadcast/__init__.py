# helpcast/core/broadcast/__init__.py
"""
Broadcast core -- storage-agnostic domain logic.

This package holds the domain models, the ports implemented by infra
adapters, and the use cases: request intake, category resolution,
helper eligibility, notification fan-out, media sideload, and the
background dispatcher.

Canonical imports:
    from helpcast.core.broadcast import RequestIntakeHandler, BroadcastDispatcher
    from helpcast.core.broadcast.domain import DispatchPlan, HelperCandidate
    from helpcast.core.broadcast.ports import RequestStore
"""
from helpcast.core.broadcast.domain import (  # noqa: F401
    BroadcastInput,
    Category,
    DispatchPlan,
    DispatchState,
    HelperCandidate,
    HelperMatch,
    IntakeResult,
    ServiceRequest,
    UrgencyLevel,
)
from helpcast.core.broadcast.errors import (  # noqa: F401
    AuthenticationError,
    BroadcastError,
    CategoryPersistenceError,
    NotFoundError,
    RequestPersistenceError,
)
from helpcast.core.broadcast.categories import CategoryResolver  # noqa: F401
from helpcast.core.broadcast.matching import EligibilityFilter, TolerantCategoryMatch  # noqa: F401
from helpcast.core.broadcast.fanout import NotificationFanout  # noqa: F401
from helpcast.core.broadcast.media import MediaSideloader  # noqa: F401
from helpcast.core.broadcast.intake import RequestIntakeHandler  # noqa: F401
from helpcast.core.broadcast.dispatch import BroadcastDispatcher  # noqa: F401
