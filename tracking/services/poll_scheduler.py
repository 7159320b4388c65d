# tracking/services/poll_scheduler.py
from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, Dict, Optional

from tracking.config import validate_timing
from tracking.models import TrackingSession
from utils.logger import logger as default_logger
from utils.time import monotonic_ms

TickFn = Callable[[TrackingSession], Awaitable[None]]


class PollScheduler:
    """
    Fires on_tick(session) every interval_ms while the session is active and
    enforces max_duration_ms measured from session.started_at.

    - One asyncio task per session; ticks of a session never overlap.
    - A tick that raises is logged and polling continues.
    - Timeout marks the session inactive and calls on_timeout once; it says
      nothing about the payment itself.
    - A tick still waiting when max_duration_ms runs out is cancelled and
      the session times out at the deadline, not after the call returns.
    - cancel() is synchronous and idempotent. A tick already waiting on the
      authority is left to resolve; the caller is expected to check
      session.is_active and drop the result.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None, logger=None) -> None:
        self._clock = clock or monotonic_ms
        self._log = logger or default_logger
        self._tasks: Dict[int, asyncio.Task] = {}

    def schedule(
        self,
        session: TrackingSession,
        interval_ms: int,
        max_duration_ms: int,
        on_tick: TickFn,
        on_timeout: Optional[TickFn] = None,
    ) -> None:
        validate_timing(interval_ms, max_duration_ms)
        key = id(session)
        if key in self._tasks:
            return
        task = asyncio.create_task(
            self._run(session, interval_ms, max_duration_ms, on_tick, on_timeout),
            name=f"poll:{session.payment_id}",
        )
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))

    def cancel(self, session: TrackingSession) -> None:
        session.is_active = False
        task = self._tasks.get(id(session))
        if task is None or task.done():
            return
        if session.in_flight:
            return
        task.cancel()

    def is_scheduled(self, session: TrackingSession) -> bool:
        task = self._tasks.get(id(session))
        return task is not None and not task.done()

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await t

    def _forget(self, key: int, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            self._tasks.pop(key, None)

    async def _run(
        self,
        session: TrackingSession,
        interval_ms: int,
        max_duration_ms: int,
        on_tick: TickFn,
        on_timeout: Optional[TickFn],
    ) -> None:
        loop = asyncio.get_running_loop()
        interval_s = interval_ms / 1000.0
        next_at = loop.time() + interval_s

        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            if not session.is_active:
                return

            elapsed = self._clock() - session.started_at
            if elapsed > max_duration_ms:
                await self._expire(session, max_duration_ms, on_timeout)
                return

            # a tick still waiting on the authority at the deadline is abandoned
            budget_s = max(1, max_duration_ms - elapsed) / 1000.0
            session.in_flight = True
            try:
                await asyncio.wait_for(self._tick(session, on_tick), budget_s)
            except asyncio.TimeoutError:
                session.in_flight = False
                if session.is_active:
                    await self._expire(session, max_duration_ms, on_timeout)
                return
            finally:
                session.in_flight = False

            if not session.is_active:
                return

            # fixed cadence; slots missed by a slow tick are skipped
            next_at += interval_s
            now = loop.time()
            if next_at < now:
                next_at = now + interval_s

    async def _tick(self, session: TrackingSession, on_tick: TickFn) -> None:
        try:
            await on_tick(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.warning(f"Poll tick failed for payment {session.payment_id}: {e!r}")

    async def _expire(
        self,
        session: TrackingSession,
        max_duration_ms: int,
        on_timeout: Optional[TickFn],
    ) -> None:
        pid = session.payment_id
        session.is_active = False
        self._log.info(f"Tracking timed out for payment {pid} after {max_duration_ms}ms")
        if on_timeout is None:
            return
        try:
            await on_timeout(session)
        except Exception:
            self._log.exception(f"Timeout handler failed for payment {pid}")
