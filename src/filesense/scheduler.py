"""IdleScheduler — runs background passes only while the user is away."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from filesense.config import SchedulerConfig
from filesense.utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    DISABLED = "disabled"
    IDLE = "idle"
    SCANNING = "scanning"
    SLEEPING = "sleeping"


class CancellationToken:
    """Flip-once cancellation flag polled between units of work."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


@dataclass(frozen=True, slots=True)
class PassResult:
    """Outcome of one background pass.

    Attributes:
        directories_total: Directories the pass set out to score.
        directories_done: Directories whose score and suggestions were committed.
        cancelled: True when the pass stopped at a cancellation check.
        error: Message of an unexpected failure, if the pass raised.
    """

    directories_total: int = 0
    directories_done: int = 0
    cancelled: bool = False
    error: str | None = None

    @property
    def completed_fraction(self) -> float:
        if self.directories_total == 0:
            return 1.0
        return self.directories_done / self.directories_total


@dataclass(frozen=True, slots=True)
class SchedulerStatus:
    """Point-in-time view of the scheduler."""

    state: SchedulerState
    passes_run: int
    last_pass_started: datetime | None
    last_pass_finished: datetime | None
    last_result: PassResult | None


type PassRunner = Callable[[CancellationToken], Awaitable[PassResult]]


class IdleScheduler:
    """State machine: disabled, idle, scanning, sleeping.

    ``tick`` is fed the time since the last user interaction; it never
    reads a clock or global state of its own beyond the optional *now*.
    ``run_pass`` executes the pass runner when the state is ``scanning``.
    ``run`` combines both in a polling loop for background use.
    """

    def __init__(self, runner: PassRunner, config: SchedulerConfig | None = None) -> None:
        self._runner = runner
        self._config = config or SchedulerConfig()
        self._state = SchedulerState.IDLE if self._config.enabled else SchedulerState.DISABLED
        self._token: CancellationToken | None = None
        self._passes_run = 0
        self._last_started: datetime | None = None
        self._last_finished: datetime | None = None
        self._last_result: PassResult | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    def enable(self) -> None:
        if self._state is SchedulerState.DISABLED:
            self._state = SchedulerState.IDLE

    def disable(self) -> None:
        """Turn background work off; a running pass is cancelled."""
        if self._token is not None:
            self._token.cancel()
        self._state = SchedulerState.DISABLED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _interval_elapsed(self, now: datetime) -> bool:
        if self._last_finished is None:
            return True
        return now - self._last_finished >= timedelta(seconds=self._config.min_interval_seconds)

    def tick(self, idle_seconds: float, now: datetime | None = None) -> SchedulerState:
        """Advance the state machine with the observed inactivity."""
        now = now or utcnow()
        state = self._state
        if state is SchedulerState.IDLE:
            if idle_seconds >= self._config.idle_threshold_seconds and self._interval_elapsed(now):
                self._state = SchedulerState.SCANNING
                self._token = CancellationToken()
                logger.debug("Scheduler: idle for %.0fs, starting a pass", idle_seconds)
        elif state is SchedulerState.SLEEPING:
            if self._interval_elapsed(now):
                self._state = SchedulerState.IDLE
        elif state is SchedulerState.SCANNING:
            if idle_seconds < self._config.idle_threshold_seconds:
                self.notify_activity()
        return self._state

    def notify_activity(self) -> None:
        """User activity: cancel the running pass at its next check."""
        if self._state is SchedulerState.SCANNING and self._token is not None:
            self._token.cancel()

    async def run_pass(self, now: datetime | None = None) -> PassResult | None:
        """Run one pass if the scheduler is scanning; returns its result."""
        if self._state is not SchedulerState.SCANNING:
            return None
        token = self._token or CancellationToken()
        self._token = token
        self._last_started = now or utcnow()
        try:
            result = await self._runner(token)
        except Exception as e:
            logger.warning("Background pass failed", exc_info=True)
            result = PassResult(error=str(e))
        self._finish(result, now)
        return result

    def _finish(self, result: PassResult, now: datetime | None = None) -> None:
        self._passes_run += 1
        self._last_result = result
        self._token = None
        abandoned = (
            result.cancelled and result.completed_fraction < self._config.complete_enough_ratio
        )
        # An abandoned pass does not count towards the rate limit
        if not abandoned:
            self._last_finished = now or utcnow()
        if self._state is SchedulerState.DISABLED:
            return
        self._state = SchedulerState.IDLE if abandoned else SchedulerState.SLEEPING
        logger.info(
            "Pass %s: %d/%d directories, now %s",
            "cancelled" if result.cancelled else "finished",
            result.directories_done,
            result.directories_total,
            self._state,
        )

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            state=self._state,
            passes_run=self._passes_run,
            last_pass_started=self._last_started,
            last_pass_finished=self._last_finished,
            last_result=self._last_result,
        )

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def run(self, idle_probe: Callable[[], float]) -> None:
        """Poll *idle_probe* (seconds since last interaction) and run passes.

        Returns when :meth:`stop` is called.  While a pass runs, the probe
        keeps being sampled so activity cancels it promptly.
        """
        poll = self._config.poll_interval_seconds
        while not self._stopping:
            state = self.tick(idle_probe())
            if state is not SchedulerState.SCANNING:
                await asyncio.sleep(poll)
                continue
            pass_task = asyncio.create_task(self.run_pass())
            while not pass_task.done():
                await asyncio.wait({pass_task}, timeout=poll)
                if not pass_task.done():
                    self.tick(idle_probe())
            await pass_task

    def start(self, idle_probe: Callable[[], float]) -> asyncio.Task[None]:
        """Start :meth:`run` as a background task."""
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run(idle_probe))
        return self._task

    async def stop(self) -> None:
        """Cancel any running pass and wait for the loop to exit."""
        self._stopping = True
        if self._token is not None:
            self._token.cancel()
        if self._task is not None:
            task, self._task = self._task, None
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
