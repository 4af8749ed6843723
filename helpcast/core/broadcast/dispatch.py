# helpcast/core/broadcast/dispatch.py
"""
Background chains run after the intake response is sent.

* dispatch pass: eligibility filter -> notification fan-out -> mark request
* media sideload: independent of the dispatch pass

Each chain catches and logs its own failures; neither raises.
"""
from __future__ import annotations

from helpcast.core.broadcast.domain import DispatchPlan, DispatchState
from helpcast.core.broadcast.fanout import NotificationFanout
from helpcast.core.broadcast.matching import EligibilityFilter
from helpcast.core.broadcast.media import MediaSideloader
from helpcast.core.broadcast.ports import RequestStore
from helpcast.infra.logging_config import LogContext, get_logger
from helpcast.infra.metrics import AppMetrics
from helpcast.infra.timeouts import with_timeout

logger = get_logger(__name__)

DISPATCH_JOB = "broadcast_dispatch"
MEDIA_JOB = "media_sideload"


class BroadcastDispatcher:
    def __init__(
        self,
        *,
        eligibility: EligibilityFilter,
        fanout: NotificationFanout,
        sideloader: MediaSideloader,
        requests: RequestStore,
        call_timeout: float = 8.0,
    ):
        self._eligibility = eligibility
        self._fanout = fanout
        self._sideloader = sideloader
        self._requests = requests
        self._call_timeout = call_timeout

    async def run_dispatch_pass(self, plan: DispatchPlan) -> int:
        """Discover, filter and notify helpers. Returns the notified count."""
        log = LogContext(logger, service_request_id=plan.request_id)

        with AppMetrics.track_dispatch_time(chain="dispatch"):
            try:
                result = await with_timeout(
                    self._eligibility.find_helpers(plan.category, plan.latitude, plan.longitude),
                    self._call_timeout,
                    "load_helper_pool",
                )
            except Exception as exc:
                AppMetrics.dispatch_failed(stage="discovery")
                log.error(f"Helper discovery failed: {exc}", exc_info=True)
                await self._mark(plan, DispatchState.FAILED, 0)
                return 0

            if not result.matches:
                log.info(
                    f"No helpers to notify: pool={result.pool_size}, within_radius={result.within_radius}"
                )
                AppMetrics.helpers_notified(0, mode="none")
                await self._mark(plan, DispatchState.DISPATCHED, 0)
                return 0

            outcome = await self._fanout.fan_out(plan, result.matches)

        AppMetrics.helpers_notified(outcome.helpers_notified, mode=result.mode)
        log.info(
            f"Dispatch pass complete: notified={outcome.helpers_notified}, mode={result.mode}, "
            f"push_sent={outcome.push_sent}"
        )
        await self._mark(plan, DispatchState.DISPATCHED, outcome.helpers_notified)
        return outcome.helpers_notified

    async def run_media_sideload(self, plan: DispatchPlan) -> None:
        with AppMetrics.track_dispatch_time(chain="media"):
            try:
                await self._sideloader.sideload(plan)
            except Exception as exc:
                AppMetrics.dispatch_failed(stage="media")
                logger.error(
                    f"Media sideload failed: request={plan.request_id[:8]}: {exc}",
                    exc_info=True,
                    extra={"service_request_id": plan.request_id},
                )

    async def handle_dispatch_job(self, payload: dict) -> None:
        await self.run_dispatch_pass(DispatchPlan.from_payload(payload))

    async def handle_media_job(self, payload: dict) -> None:
        await self.run_media_sideload(DispatchPlan.from_payload(payload))

    async def _mark(self, plan: DispatchPlan, state: DispatchState, count: int) -> None:
        try:
            await with_timeout(
                self._requests.mark_dispatch(plan.request_id, state, count),
                self._call_timeout,
                "mark_dispatch",
            )
        except Exception as exc:
            AppMetrics.dispatch_failed(stage="mark")
            logger.error(
                f"Failed to record dispatch state={state.value}: request={plan.request_id[:8]}: {exc}",
                exc_info=True,
                extra={"service_request_id": plan.request_id},
            )
