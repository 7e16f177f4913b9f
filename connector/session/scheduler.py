"""Renewal and inactivity timers driving an authenticated session.

Both timers are tagged with the session generation that armed them. A timer
or an in-flight renewal whose generation is no longer current does nothing,
so a logout or a fresh login can never be undone by a late callback.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Set

from connector.errors import ConfigError, RenewalFailure
from connector.obs.logger import log_event
from connector.session.activity import ActivityMonitor


TimerFactory = Callable[[float, Callable[[], None]], Any]


def asyncio_timer_factory(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Default timer factory: ``loop.call_later`` on the running event loop."""
    return asyncio.get_running_loop().call_later(delay, callback)


class RenewalScheduler:
    def __init__(
        self,
        activity: ActivityMonitor,
        renew: Callable[[], Awaitable[None]],
        expire: Callable[[str], Awaitable[None]],
        token_duration: float,
        renew_margin: float = 60,
        check_interval: float = 60,
        inactivity_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        timer_factory: TimerFactory = asyncio_timer_factory,
    ):
        self.renew_delay = token_duration - renew_margin
        if self.renew_delay <= 0:
            raise ConfigError(
                f"renew margin ({renew_margin}s) must be shorter than the token duration ({token_duration}s)"
            )
        if not 0 < check_interval < self.renew_delay:
            raise ConfigError(
                f"inactivity check interval ({check_interval}s) must be positive and "
                f"shorter than the renewal delay ({self.renew_delay}s)"
            )
        self.check_interval = check_interval
        self.inactivity_timeout = inactivity_timeout

        self._activity = activity
        self._renew = renew
        self._expire = expire
        self._clock = clock
        self._timer_factory = timer_factory

        self.renew_timer = None
        self.inactivity_check_timer = None
        self.generation: Optional[int] = None
        # Activity folded in by inactivity checks since the last renewal
        self._activity_seen = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self.generation is not None

    def start(self, generation: int) -> None:
        """(Re)arm both timers for ``generation``. Never stacks timers."""
        self._cancel_timers()
        self.generation = generation
        self._activity_seen = False
        self.renew_timer = self._timer_factory(
            self.renew_delay, lambda: self._on_renew_due(generation)
        )
        self.inactivity_check_timer = self._timer_factory(
            self.check_interval, lambda: self._on_check_due(generation)
        )

    def stop(self) -> None:
        self._cancel_timers()
        self.generation = None
        self._activity_seen = False

    def _cancel_timers(self) -> None:
        if self.renew_timer is not None:
            self.renew_timer.cancel()
            self.renew_timer = None
        if self.inactivity_check_timer is not None:
            self.inactivity_check_timer.cancel()
            self.inactivity_check_timer = None

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------
    def _on_renew_due(self, generation: int) -> None:
        if generation != self.generation:
            return
        self.renew_timer = None
        self._spawn(self._renew_cycle(generation))

    async def _renew_cycle(self, generation: int) -> None:
        if generation != self.generation:
            return
        active = self._activity.consume_activity() or self._activity_seen
        self._activity_seen = False

        if self._activity.enabled and not active:
            log_event("renewal_skipped", reason="inactivity", generation=generation)
            self.stop()
            await self._expire("inactivity")
            return

        try:
            await self._renew()
        except Exception as e:
            # any failure ends the session; only RenewalFailure is expected
            if generation != self.generation:
                return
            level = "WARNING" if isinstance(e, RenewalFailure) else "ERROR"
            log_event("renewal_failed", level=level, status=getattr(e, "status", None), error=repr(e))
            self.stop()
            await self._expire("renewal_failed")
            return

        if generation == self.generation:
            self.start(generation)

    def _on_check_due(self, generation: int) -> None:
        if generation != self.generation:
            return
        self.inactivity_check_timer = None
        if self._activity.consume_activity():
            self._activity_seen = True

        if self._inactive_too_long():
            log_event("inactivity_timeout", generation=generation,
                      idle_seconds=round(self._clock() - self._activity.last_activity_at, 3))
            self.stop()
            self._spawn(self._expire("inactivity"))
            return

        self.inactivity_check_timer = self._timer_factory(
            self.check_interval, lambda: self._on_check_due(generation)
        )

    def _inactive_too_long(self) -> bool:
        if not self._activity.enabled or self.inactivity_timeout is None:
            return False
        last = self._activity.last_activity_at
        return last is not None and self._clock() - last >= self.inactivity_timeout

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------
    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_event("scheduler_task_error", level="ERROR", error=repr(task.exception()))

    async def wait_idle(self) -> None:
        """Wait until every renewal/expiry coroutine spawned by a timer has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
