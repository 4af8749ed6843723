"""
Typed errors for the broadcast intake path.

Each error maps to a specific HTTP status code.  The transport layer
catches ``BroadcastError`` subtypes and converts them to JSON responses
without embedding business logic in the route handlers.

Background chains never raise these to a caller; they log and stop.
"""
from __future__ import annotations


class BroadcastError(Exception):
    """Base class for all broadcast domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Failed to broadcast request"):
        self.detail = detail
        super().__init__(detail)


class AuthenticationError(BroadcastError):
    """No valid caller identity (401)."""

    status_code = 401

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)


class CategoryPersistenceError(BroadcastError):
    """The fallback category could not be created (500)."""

    def __init__(self, detail: str = "Failed to setup service category"):
        super().__init__(detail)


class RequestPersistenceError(BroadcastError):
    """The service request row could not be written (500)."""

    def __init__(self, detail: str = "Failed to create service request"):
        super().__init__(detail)


class NotFoundError(BroadcastError):
    """Request missing or not owned by the caller (404)."""

    status_code = 404

    def __init__(self, detail: str = "Service request not found"):
        super().__init__(detail)
