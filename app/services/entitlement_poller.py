"""
Periodic entitlement refresh with an explicit cancellation handle.

Replaces an always-on UI timer: the owner starts polling when a session
begins and cancels the handle on teardown.

This is a client-side helper. The API itself checks access per request
(app.dependencies.entitlement.require_access); a client session that wants
to notice expiry between requests builds a poller around its own check,
e.g. a call to GET /subscription/status.
"""
import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from app.core.retention_policy import ENTITLEMENT_POLL_INTERVAL_SECONDS
from app.services.entitlement import BLOCKED_DECISION, EntitlementDecision

logger = logging.getLogger(__name__)

CheckFn = Callable[[], Union[EntitlementDecision, Awaitable[EntitlementDecision]]]
ChangeFn = Callable[[EntitlementDecision], None]


class PollingHandle:
    def __init__(self, task: asyncio.Task):
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled() or self._task.done()


class EntitlementPoller:
    def __init__(
        self,
        check: CheckFn,
        interval: float = ENTITLEMENT_POLL_INTERVAL_SECONDS,
        on_change: Optional[ChangeFn] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._check = check
        self.interval = interval
        self._on_change = on_change
        self._task: Optional[asyncio.Task] = None
        self.latest: Optional[EntitlementDecision] = None

    async def refresh(self) -> EntitlementDecision:
        """Run one check now. A failing check yields the blocked decision."""
        try:
            result = self._check()
            if inspect.isawaitable(result):
                result = await result
            decision = result
        except Exception as e:
            logger.warning("[EntitlementPoller] Entitlement check failed, blocking access: %s", e)
            decision = BLOCKED_DECISION

        changed = decision != self.latest
        self.latest = decision
        if changed and self._on_change is not None:
            try:
                self._on_change(decision)
            except Exception:
                logger.exception("[EntitlementPoller] on_change callback failed")
        return decision

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    def start(self) -> PollingHandle:
        """Start polling on the running loop. Checks once immediately."""
        if self._task is not None and not self._task.done():
            return PollingHandle(self._task)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return PollingHandle(self._task)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
