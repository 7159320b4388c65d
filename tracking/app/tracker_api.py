# tracking/app/tracker_api.py
from __future__ import annotations

import asyncio
import contextlib
from collections import Counter
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from infra.http_client import HttpError
from tracking.config import TrackerSettings
from tracking.enums import NotifyKind, Outcome, PaymentStatus, TrackState
from tracking.errors import AuthorityError, ConfigError
from tracking.event_bus import TOPIC_STATUS, EventBus
from tracking.models import StatusChange, TrackedPayment, TrackerSnapshot, TrackingSession
from tracking.services.dedup_service import NotificationDeduplicator
from tracking.services.poll_scheduler import PollScheduler
from tracking.services.reconcile_service import MSG_STARTED, MSG_TIMEOUT, OutcomeReconciler
from tracking.stores.payment_store import PaymentStore
from tracking.stores.registry import TrackerRegistry
from utils.logger import logger as default_logger
from utils.time import monotonic_ms, utc_ms


class TrackerController:
    """
    Application-facing payment tracker.

    Owns the per-login TrackerRegistry, starts/stops polling sessions, turns
    reconciliation outcomes into effects (notification, membership
    invalidation, status listeners) and auto-discovers pending payments.

    Per-payment states: idle -> tracking -> done_success | done_failure |
    done_timeout; stop_tracking returns any state to idle.
    """

    def __init__(
        self,
        authority,
        membership,
        sink,
        *,
        settings: Optional[TrackerSettings] = None,
        registry: Optional[TrackerRegistry] = None,
        store: Optional[PaymentStore] = None,
        scheduler: Optional[PollScheduler] = None,
        reconciler: Optional[OutcomeReconciler] = None,
        dedup: Optional[NotificationDeduplicator] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], int]] = None,
        logger=None,
    ) -> None:
        self.settings = (settings or TrackerSettings()).validate()
        self._authority = authority
        self._membership = membership
        self._sink = sink
        self._clock = clock or monotonic_ms
        self._log = logger or default_logger

        self._registry = registry if registry is not None else TrackerRegistry()
        self._store = store if store is not None else PaymentStore()
        self._scheduler = scheduler or PollScheduler(clock=self._clock, logger=self._log)
        self._reconciler = reconciler or OutcomeReconciler(logger=self._log)
        self._dedup = dedup or NotificationDeduplicator(self._store, logger=self._log)
        self._bus = event_bus or EventBus()

        self._states: Dict[str, TrackState] = {}
        self._changed = False
        self._last_update: Optional[Dict[str, Any]] = None
        self._pending: List[TrackedPayment] = []
        self._background: set[asyncio.Task] = set()

    @property
    def registry(self) -> TrackerRegistry:
        return self._registry

    @property
    def store(self) -> PaymentStore:
        return self._store

    # ---- control ------------------------------------------------------------------
    def start_tracking(self, payment_id: str, *, known: Optional[TrackedPayment] = None) -> bool:
        """
        Start polling payment_id. No-op (returns False) when already tracked.
        `known` seeds the mirror with a status already read from the authority.
        """
        if payment_id in self._registry:
            return False

        cur = self._store.get(payment_id)
        if (cur is not None and cur.status.is_terminal) or (known is not None and known.status.is_terminal):
            self._log.debug(f"Not tracking settled payment {payment_id}")
            return False
        if known is not None and (cur is None or known.status.rank > cur.status.rank):
            self._store.upsert(known)

        session = TrackingSession(payment_id=payment_id, started_at=self._clock(), is_active=True)
        self._registry.add(session)
        self._states[payment_id] = TrackState.TRACKING
        self._scheduler.schedule(
            session,
            self.settings.poll_interval_ms,
            self.settings.max_poll_duration_ms,
            self._on_tick,
            self._on_timeout,
        )
        self._log.info(f"Tracking started for payment {payment_id}")

        if self.settings.notify_on_start:
            self._spawn(self._emit(NotifyKind.INFO, MSG_STARTED))
        return True

    def stop_tracking(self, payment_id: str) -> None:
        session = self._registry.remove(payment_id)
        if session is not None:
            self._scheduler.cancel(session)
            self._log.info(f"Tracking stopped for payment {payment_id}")
        self._states.pop(payment_id, None)

    def stop_all(self) -> None:
        for payment_id in list(self._registry):
            self.stop_tracking(payment_id)
        self._states.clear()

    async def dispose(self) -> None:
        """Teardown on logout: no timer, task or remembered state survives."""
        self.stop_all()
        await self._scheduler.aclose()
        tasks = list(self._background)
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await t
        self._background.clear()
        self._registry.clear()
        self._store.clear()
        self._bus.clear()
        self._pending = []
        self._last_update = None
        self._changed = False

    # ---- reads --------------------------------------------------------------------
    def is_tracking(self, payment_id: str) -> bool:
        return payment_id in self._registry

    def state_of(self, payment_id: str) -> TrackState:
        return self._states.get(payment_id, TrackState.IDLE)

    def get_snapshot(self) -> TrackerSnapshot:
        """Current sessions; `changed` reports status changes since the previous call."""
        now = self._clock()
        max_ms = self.settings.max_poll_duration_ms
        elapsed = {s.payment_id: max(0, now - s.started_at) for s in self._registry.sessions()}
        changed, self._changed = self._changed, False
        return TrackerSnapshot(
            tracked_ids=list(elapsed.keys()),
            elapsed_ms=elapsed,
            remaining_ms={pid: max(0, max_ms - e) for pid, e in elapsed.items()},
            states=dict(self._states),
            changed=changed,
            last_update=dict(self._last_update) if self._last_update else None,
        )

    def on_status_change(self, callback: Callable[[StatusChange], None]) -> Callable[[], None]:
        """Subscribe to settled/rejected/escalated transitions; returns an unsubscribe function."""
        self._bus.subscribe(TOPIC_STATUS, callback)
        return lambda: self._bus.unsubscribe(TOPIC_STATUS, callback)

    async def check_now(self, payment_id: str) -> Optional[TrackedPayment]:
        """One-off authority read; errors are logged and yield None."""
        try:
            return await self._authority.get_payment_status(payment_id)
        except (AuthorityError, HttpError) as e:
            self._log.warning(f"Status check failed for payment {payment_id}: {e}")
            return None

    # ---- auto-discovery -----------------------------------------------------------
    async def refresh(self, user_id: Optional[str] = None) -> List[str]:
        """Read the user's pending payments and start tracking any untracked non-terminal one."""
        uid = user_id or self.settings.user_id
        if not uid:
            raise ConfigError("user id required for pending payment discovery")
        try:
            payments = await self._authority.list_pending_payments(uid)
        except (AuthorityError, HttpError) as e:
            self._log.warning(f"Pending payments refresh failed for user {uid}: {e}")
            return []

        self._pending = [p for p in payments if not p.status.is_terminal]
        started: List[str] = []
        for p in self._pending:
            if p.id in self._registry:
                continue
            if self.start_tracking(p.id, known=p):
                started.append(p.id)
        if started:
            self._log.info(f"Auto-discovered {len(started)} pending payment(s): {started}")
        return started

    def pending_summary(self) -> Dict[str, Any]:
        ps = self._pending
        dated = [p for p in ps if p.created_at is not None]
        return {
            "total": len(ps),
            "by_method": dict(Counter(p.method.value for p in ps)),
            "total_amount": sum((p.amount for p in ps), Decimal("0")),
            "oldest": min(dated, key=lambda p: p.created_at) if dated else None,
        }

    # ---- polling callbacks --------------------------------------------------------
    async def _on_tick(self, session: TrackingSession) -> None:
        pid = session.payment_id
        fresh = await self._authority.get_payment_status(pid)
        if not session.is_active or self._registry.get(pid) is not session:
            self._log.debug(f"Discarding late status for stopped payment {pid}")
            return
        await self._apply(session, fresh)

    async def _apply(self, session: TrackingSession, fresh: TrackedPayment) -> None:
        pid = session.payment_id
        cur = self._store.get(pid)
        previous = cur.status if cur else None
        outcome = self._reconciler.reconcile(previous, fresh.status, fresh.method, payment_id=pid)
        if outcome.anomaly:
            self._finish_if_settled(session)
            return
        payment = self._store.upsert(fresh)
        if outcome.kind is Outcome.UNCHANGED:
            self._finish_if_settled(session)
            return

        self._changed = True
        self._last_update = {"payment_id": pid, "status": fresh.status, "timestamp": utc_ms()}

        if outcome.kind is Outcome.SETTLED:
            self._finish(session, TrackState.DONE_SUCCESS)
        elif outcome.kind is Outcome.REJECTED:
            self._finish(session, TrackState.DONE_FAILURE)

        if self._dedup.should_notify(pid, fresh.status):
            await self._emit(outcome.notify_kind, outcome.message)

        if outcome.refresh_membership:
            try:
                await self._membership.invalidate()
            except Exception:
                self._log.exception(f"Membership invalidation failed after payment {pid}")

        self._bus.publish(TOPIC_STATUS, StatusChange(
            payment_id=pid,
            previous=previous,
            current=fresh.status,
            outcome=outcome.kind,
            payment=payment,
        ))

        if outcome.terminal and self.settings.user_id:
            self._spawn(self.refresh())

    async def _on_timeout(self, session: TrackingSession) -> None:
        pid = session.payment_id
        if self._registry.get(pid) is not session:
            return
        self._registry.remove(pid)
        self._states[pid] = TrackState.DONE_TIMEOUT
        self._changed = True
        await self._emit(NotifyKind.INFO, MSG_TIMEOUT)

    def _finish(self, session: TrackingSession, state: TrackState) -> None:
        self._scheduler.cancel(session)
        self._registry.remove(session.payment_id)
        self._states[session.payment_id] = state
        self._log.info(f"Tracking finished for payment {session.payment_id}: {state.value}")

    def _finish_if_settled(self, session: TrackingSession) -> None:
        # mirror already terminal: nothing left to observe, end without effects
        cur = self._store.get(session.payment_id)
        if cur is None or not cur.status.is_terminal:
            return
        state = TrackState.DONE_SUCCESS if cur.status is PaymentStatus.COMPLETED else TrackState.DONE_FAILURE
        self._finish(session, state)

    async def _emit(self, kind: NotifyKind, message: str) -> None:
        if not self.settings.auto_notify:
            return
        try:
            await self._sink.notify(kind, message)
        except Exception:
            self._log.exception(f"Notification emit failed ({kind.value}): {message}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
