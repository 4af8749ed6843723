# helpcast/core/broadcast/fanout.py
"""
Notification fan-out for one dispatch pass.

Writes three batches (broadcast audit rows, helper push notifications,
requester confirmation) concurrently, then triggers push delivery once.
Every failure is logged and swallowed here: the pass is best-effort and
the request stays valid with zero or partial notifications.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from helpcast.core.broadcast.domain import (
    BroadcastNotification,
    DispatchPlan,
    HelperMatch,
    JobAlert,
    Notification,
)
from helpcast.core.broadcast.ports import NotificationWriter, PushDispatcher
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import AppMetrics
from helpcast.infra.timeouts import with_timeout

logger = get_logger(__name__)

JOB_ALERT_COUNTDOWN_SECONDS = 30


def format_price(price: Optional[float]) -> str:
    if price is None:
        return "₹-"
    if float(price).is_integer():
        return f"₹{int(price)}"
    return f"₹{price:.2f}"


def helper_title(category_name: str) -> str:
    return f"New {category_name} Job!"


def helper_body(requester_name: str, price: Optional[float], distance_km: float) -> str:
    where = f"{distance_km:.1f}km away" if distance_km > 0 else "Near you"
    return f"{requester_name} needs help! {format_price(price)} • {where}"


def requester_body(category_name: str, count: int) -> str:
    noun = "helper" if count == 1 else "helpers"
    return (
        f"Your {category_name} request has been sent to {count} qualified {noun}. "
        f"You'll receive responses soon!"
    )


@dataclass(frozen=True)
class FanoutOutcome:
    helpers_notified: int
    broadcasts_written: bool
    notifications_written: bool
    push_sent: bool


class NotificationFanout:
    def __init__(
        self,
        writer: NotificationWriter,
        push: Optional[PushDispatcher],
        *,
        countdown_seconds: int = JOB_ALERT_COUNTDOWN_SECONDS,
        call_timeout: float = 8.0,
    ):
        self._writer = writer
        self._push = push
        self._countdown_seconds = countdown_seconds
        self._call_timeout = call_timeout

    # -- row builders -------------------------------------------------------

    @staticmethod
    def build_broadcasts(
        plan: DispatchPlan, matches: Sequence[HelperMatch], sent_at: datetime
    ) -> list[BroadcastNotification]:
        return [
            BroadcastNotification(
                request_id=plan.request_id,
                helper_id=m.helper.id,
                distance_km=round(m.distance_km, 2),
                sent_at=sent_at,
            )
            for m in matches
        ]

    @staticmethod
    def build_helper_notifications(
        plan: DispatchPlan, matches: Sequence[HelperMatch]
    ) -> list[Notification]:
        rows = []
        for m in matches:
            rows.append(
                Notification(
                    user_id=m.helper.user_id,
                    request_id=plan.request_id,
                    title=helper_title(plan.category.name),
                    body=helper_body(plan.requester_name, plan.estimated_price, m.distance_km),
                    data={
                        "type": "new_job_broadcast",
                        "request_id": plan.request_id,
                        "category": plan.category.name,
                        "estimated_price": plan.estimated_price,
                        "urgency": plan.urgency,
                        "customer_name": plan.requester_name,
                        "address": plan.address,
                        "distance_km": f"{m.distance_km:.1f}",
                    },
                )
            )
        return rows

    @staticmethod
    def build_requester_confirmation(plan: DispatchPlan, count: int) -> Notification:
        return Notification(
            user_id=plan.requester_id,
            request_id=plan.request_id,
            title="Request Broadcasted Successfully!",
            body=requester_body(plan.category.name, count),
            data={
                "type": "request_broadcasted",
                "request_id": plan.request_id,
                "helpers_notified": count,
            },
        )

    def build_job_alert(self, plan: DispatchPlan, matches: Sequence[HelperMatch]) -> JobAlert:
        return JobAlert(
            helper_user_ids=[m.helper.user_id for m in matches],
            request_id=plan.request_id,
            title=helper_title(plan.category.name),
            description=plan.description or "",
            price=plan.estimated_price,
            location=plan.address or "",
            customer_name=plan.requester_name,
            urgency=plan.urgency,
            expires_in_seconds=self._countdown_seconds,
        )

    # -- fan-out ------------------------------------------------------------

    async def fan_out(self, plan: DispatchPlan, matches: Sequence[HelperMatch]) -> FanoutOutcome:
        """Write all rows, then trigger push. Never raises."""
        if not matches:
            return FanoutOutcome(0, False, False, False)

        sent_at = datetime.now(timezone.utc)
        broadcasts = self.build_broadcasts(plan, matches, sent_at)
        helper_rows = self.build_helper_notifications(plan, matches)
        confirmation = self.build_requester_confirmation(plan, len(matches))

        results = await asyncio.gather(
            with_timeout(self._writer.insert_broadcasts(broadcasts), self._call_timeout, "insert_broadcasts"),
            with_timeout(self._writer.insert_notifications(helper_rows), self._call_timeout, "insert_helper_notifications"),
            with_timeout(self._writer.insert_notifications([confirmation]), self._call_timeout, "insert_requester_confirmation"),
            return_exceptions=True,
        )

        labels = ("broadcast_notifications", "helper_notifications", "requester_confirmation")
        for label, outcome in zip(labels, results):
            if isinstance(outcome, BaseException):
                AppMetrics.dispatch_failed(stage=label)
                logger.error(
                    f"Fan-out write failed: {label}, request={plan.request_id[:8]}: {outcome!r}",
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                    extra={"service_request_id": plan.request_id},
                )

        push_sent = await self._trigger_push(plan, matches)

        return FanoutOutcome(
            helpers_notified=len(matches),
            broadcasts_written=not isinstance(results[0], BaseException),
            notifications_written=not isinstance(results[1], BaseException),
            push_sent=push_sent,
        )

    async def _trigger_push(self, plan: DispatchPlan, matches: Sequence[HelperMatch]) -> bool:
        if self._push is None:
            logger.warning("Push dispatcher not configured; skipping job alert")
            AppMetrics.push_trigger(status="skipped")
            return False

        alert = self.build_job_alert(plan, matches)
        try:
            response = await with_timeout(self._push.send_job_alert(alert), self._call_timeout, "push_job_alert")
        except Exception as exc:
            AppMetrics.push_trigger(status="failed")
            logger.error(
                f"Job alert push failed: request={plan.request_id[:8]}, helpers={len(alert.helper_user_ids)}: {exc}",
                exc_info=True,
                extra={"service_request_id": plan.request_id},
            )
            return False

        AppMetrics.push_trigger(status="sent")
        logger.info(
            f"Job alert pushed: request={plan.request_id[:8]}, helpers={len(alert.helper_user_ids)}, "
            f"response={response}",
            extra={"service_request_id": plan.request_id},
        )
        return True
