import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio

from tracking.app.tracker_api import TrackerController
from tracking.config import TrackerSettings
from tracking.enums import NotifyKind, Outcome, PaymentStatus, TrackState
from tracking.errors import ConfigError, NetworkError
from tracking.services.notification_service import CallbackNotificationSink
from tracking.services.reconcile_service import MSG_STARTED, MSG_TIMEOUT

from fakes import FakeAuthority, FakeMembership, FakeSink, ManualClock, payment, wait_until


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def authority(clock):
    return FakeAuthority(clock=clock, advance_ms=10)


@pytest.fixture
def membership():
    return FakeMembership()


@pytest.fixture
def sink():
    return FakeSink()


def make_tracker(authority, membership, sink, clock, **overrides):
    settings = TrackerSettings(poll_interval_ms=10, max_poll_duration_ms=50, **overrides)
    return TrackerController(authority, membership, sink, settings=settings, clock=clock)


@pytest_asyncio.fixture
async def tracker(authority, membership, sink, clock):
    t = make_tracker(authority, membership, sink, clock)
    yield t
    await t.dispose()


@pytest.mark.asyncio
async def test_start_twice_keeps_one_session(tracker, authority):
    authority.script("pay_1", ["pending"])
    assert tracker.start_tracking("pay_1") is True
    assert tracker.start_tracking("pay_1") is False
    assert tracker.registry.ids() == ["pay_1"]
    assert tracker._scheduler.active_count == 1


@pytest.mark.asyncio
async def test_end_to_end_transfer_settles_once(tracker, authority, membership, sink):
    authority.script("pay_1", ["pending", "pending", "completed"], method="transfer")
    tracker.start_tracking("pay_1")

    assert await wait_until(lambda: not tracker.is_tracking("pay_1"))
    await asyncio.sleep(0.03)

    assert sink.kinds() == [NotifyKind.SUCCESS]
    assert "transfer" in sink.sent[0][1]
    assert membership.invalidations == 1
    assert "pay_1" not in tracker.registry
    assert tracker.state_of("pay_1") is TrackState.DONE_SUCCESS
    assert authority.calls["pay_1"] == 3


@pytest.mark.asyncio
async def test_redundant_polls_notify_once_per_transition(tracker, authority, sink):
    authority.script("pay_1", ["pending", "pending", "under_review", "under_review", "completed"])
    tracker.start_tracking("pay_1")

    assert await wait_until(lambda: tracker.state_of("pay_1") is TrackState.DONE_SUCCESS)
    assert sink.kinds() == [NotifyKind.INFO, NotifyKind.SUCCESS]


@pytest.mark.asyncio
async def test_timeout_is_not_a_failure(authority, membership, sink, clock):
    authority._advance_ms = 20
    authority.script("pay_1", ["pending"])
    t = make_tracker(authority, membership, sink, clock)
    try:
        t.start_tracking("pay_1")
        assert await wait_until(lambda: t.state_of("pay_1") is TrackState.DONE_TIMEOUT)
        await asyncio.sleep(0.03)
        assert sink.sent == [(NotifyKind.INFO, MSG_TIMEOUT)]
        assert NotifyKind.ERROR not in sink.kinds()
        assert not t.is_tracking("pay_1")
        assert authority.calls["pay_1"] == 3
    finally:
        await t.dispose()


@pytest.mark.asyncio
async def test_stop_during_in_flight_poll_has_no_side_effects(tracker, authority, membership, sink):
    authority.script("pay_1", ["completed"])
    authority.gate = asyncio.Event()
    tracker.start_tracking("pay_1")

    assert await wait_until(lambda: authority.calls["pay_1"] == 1)
    tracker.stop_tracking("pay_1")
    authority.gate.set()
    await asyncio.sleep(0.03)

    assert sink.sent == []
    assert membership.invalidations == 0
    assert tracker.state_of("pay_1") is TrackState.IDLE
    assert authority.calls["pay_1"] == 1


@pytest.mark.asyncio
async def test_stop_unknown_id_is_safe(tracker):
    tracker.stop_tracking("nope")
    tracker.stop_all()
    assert len(tracker.registry) == 0


@pytest.mark.asyncio
async def test_settled_payment_is_not_tracked_again(tracker, authority, sink):
    authority.script("pay_1", ["completed"])
    tracker.start_tracking("pay_1")
    assert await wait_until(lambda: tracker.state_of("pay_1") is TrackState.DONE_SUCCESS)
    calls = authority.calls["pay_1"]

    assert tracker.start_tracking("pay_1") is False
    await asyncio.sleep(0.08)

    assert not tracker.is_tracking("pay_1")
    assert tracker.state_of("pay_1") is TrackState.DONE_SUCCESS
    assert authority.calls["pay_1"] == calls
    assert sink.kinds() == [NotifyKind.SUCCESS]


@pytest.mark.asyncio
async def test_session_ends_quietly_when_mirror_is_already_terminal(tracker, authority, membership, sink):
    authority.script("pay_1", ["completed"])
    tracker.start_tracking("pay_1")
    tracker.store.upsert(payment("pay_1", "completed"))

    assert await wait_until(lambda: not tracker.is_tracking("pay_1"))
    await asyncio.sleep(0.03)

    assert tracker.state_of("pay_1") is TrackState.DONE_SUCCESS
    assert sink.sent == []
    assert membership.invalidations == 0
    assert authority.calls["pay_1"] == 1


@pytest.mark.asyncio
async def test_hung_status_call_still_times_out(tracker, authority, sink):
    authority.script("pay_1", ["completed"])
    authority.gate = asyncio.Event()
    tracker.start_tracking("pay_1")

    assert await wait_until(lambda: tracker.state_of("pay_1") is TrackState.DONE_TIMEOUT)
    assert sink.sent == [(NotifyKind.INFO, MSG_TIMEOUT)]
    assert not tracker.is_tracking("pay_1")
    assert authority.calls["pay_1"] == 1

    # a late answer after the deadline changes nothing
    authority.gate.set()
    await asyncio.sleep(0.03)
    assert tracker.state_of("pay_1") is TrackState.DONE_TIMEOUT
    assert sink.kinds() == [NotifyKind.INFO]


@pytest.mark.asyncio
async def test_callback_sink_receives_outcome(authority, membership, clock):
    received = []

    async def send(kind, message):
        received.append((kind, message))

    authority.script("pay_3", ["pending", "completed"], method="cash")
    t = TrackerController(authority, membership, CallbackNotificationSink(send),
                          settings=TrackerSettings(poll_interval_ms=10, max_poll_duration_ms=50),
                          clock=clock)
    try:
        t.start_tracking("pay_3")
        assert await wait_until(lambda: received)
        assert received[0][0] is NotifyKind.SUCCESS
        assert "cash payment" in received[0][1]
    finally:
        await t.dispose()


@pytest.mark.asyncio
async def test_regression_is_ignored(tracker, authority, sink):
    authority.script("pay_1", ["under_review", "pending", "pending"])
    tracker.start_tracking("pay_1")

    assert await wait_until(lambda: authority.calls["pay_1"] >= 3)
    assert sink.kinds() == [NotifyKind.INFO]
    assert tracker.store.get("pay_1").status is PaymentStatus.UNDER_REVIEW
    assert tracker.is_tracking("pay_1")


@pytest.mark.asyncio
async def test_rejected_payment_notifies_error_and_stops(tracker, authority, membership, sink):
    authority.script("pay_2", ["pending", "failed"], method="cash")
    tracker.start_tracking("pay_2")

    assert await wait_until(lambda: tracker.state_of("pay_2") is TrackState.DONE_FAILURE)
    assert sink.kinds() == [NotifyKind.ERROR]
    assert "contact support" in sink.sent[0][1]
    assert membership.invalidations == 0
    assert not tracker.is_tracking("pay_2")


@pytest.mark.asyncio
async def test_transient_errors_keep_tracking(tracker, authority, sink):
    authority.script("pay_1", [NetworkError("boom"), NetworkError("boom"), "completed"])
    tracker.start_tracking("pay_1")

    assert await wait_until(lambda: tracker.state_of("pay_1") is TrackState.DONE_SUCCESS)
    assert sink.kinds() == [NotifyKind.SUCCESS]


@pytest.mark.asyncio
async def test_auto_discovery_tracks_only_non_terminal(tracker, authority):
    authority.script("pay_a", ["pending"])
    authority.script("pay_b", ["pending"], method="cash")
    authority.pending = [
        payment("pay_a", "pending"),
        payment("pay_b", "pending", "cash"),
        payment("pay_c", "completed"),
    ]

    started = await tracker.refresh("user_1")

    assert sorted(started) == ["pay_a", "pay_b"]
    assert tracker.is_tracking("pay_a")
    assert tracker.is_tracking("pay_b")
    assert not tracker.is_tracking("pay_c")
    assert await tracker.refresh("user_1") == []
    assert len(tracker.registry) == 2


@pytest.mark.asyncio
async def test_refresh_requires_user_id(tracker):
    with pytest.raises(ConfigError):
        await tracker.refresh()


@pytest.mark.asyncio
async def test_pending_summary(tracker, authority):
    authority.script("pay_a", ["pending"])
    authority.script("pay_b", ["pending"])
    authority.pending = [
        payment("pay_a", "pending", "transfer", "100.50", created_at=datetime(2024, 5, 2)),
        payment("pay_b", "pending", "cash", "49.50", created_at=datetime(2024, 5, 1)),
    ]
    await tracker.refresh("user_1")

    summary = tracker.pending_summary()
    assert summary["total"] == 2
    assert summary["by_method"] == {"transfer": 1, "cash": 1}
    assert summary["total_amount"] == Decimal("150.00")
    assert summary["oldest"].id == "pay_b"


@pytest.mark.asyncio
async def test_terminal_outcome_triggers_pending_refresh(authority, membership, sink, clock):
    authority.script("pay_1", ["completed"])
    t = make_tracker(authority, membership, sink, clock, user_id="user_1")
    try:
        t.start_tracking("pay_1")
        assert await wait_until(lambda: authority.list_calls >= 1)
    finally:
        await t.dispose()


@pytest.mark.asyncio
async def test_status_listeners_receive_changes(tracker, authority):
    seen = []

    def bad_listener(change):
        raise RuntimeError("bad listener")

    tracker.on_status_change(bad_listener)
    tracker.on_status_change(seen.append)
    authority.script("pay_1", ["under_review", "completed"])
    tracker.start_tracking("pay_1")

    assert await wait_until(lambda: len(seen) == 2)
    assert [c.outcome for c in seen] == [Outcome.ESCALATED, Outcome.SETTLED]
    assert seen[0].previous is None
    assert seen[1].previous is PaymentStatus.UNDER_REVIEW


@pytest.mark.asyncio
async def test_auto_notify_off_still_applies_effects(authority, membership, sink, clock):
    authority.script("pay_1", ["completed"])
    t = make_tracker(authority, membership, sink, clock, auto_notify=False)
    try:
        t.start_tracking("pay_1")
        assert await wait_until(lambda: t.state_of("pay_1") is TrackState.DONE_SUCCESS)
        assert sink.sent == []
        assert membership.invalidations == 1
    finally:
        await t.dispose()


@pytest.mark.asyncio
async def test_failing_sink_is_not_retried(authority, membership, clock):
    sink = FakeSink(fail=True)
    authority.script("pay_1", ["completed"])
    t = make_tracker(authority, membership, sink, clock)
    try:
        t.start_tracking("pay_1")
        assert await wait_until(lambda: t.state_of("pay_1") is TrackState.DONE_SUCCESS)
        assert membership.invalidations == 1
        assert t.store.get("pay_1").last_notified_status is PaymentStatus.COMPLETED
    finally:
        await t.dispose()


@pytest.mark.asyncio
async def test_notify_on_start(authority, membership, sink, clock):
    authority.script("pay_1", ["pending"])
    t = make_tracker(authority, membership, sink, clock, notify_on_start=True)
    try:
        t.start_tracking("pay_1")
        assert await wait_until(lambda: sink.sent)
        assert sink.sent[0] == (NotifyKind.INFO, MSG_STARTED)
    finally:
        await t.dispose()


@pytest.mark.asyncio
async def test_snapshot_reports_changes_once(tracker, authority, clock):
    authority.script("pay_1", ["pending", "under_review"])
    tracker.start_tracking("pay_1")

    first = tracker.get_snapshot()
    assert first.tracked_ids == ["pay_1"]
    assert first.changed is False

    assert await wait_until(lambda: tracker.store.get("pay_1") is not None
                            and tracker.store.get("pay_1").status is PaymentStatus.UNDER_REVIEW)
    snap = tracker.get_snapshot()
    assert snap.changed is True
    assert snap.last_update["status"] is PaymentStatus.UNDER_REVIEW
    assert snap.elapsed_ms["pay_1"] == clock()
    assert snap.remaining_ms["pay_1"] == max(0, 50 - clock())
    assert tracker.get_snapshot().changed is False


@pytest.mark.asyncio
async def test_dispose_clears_everything(authority, membership, sink, clock):
    authority.script("pay_1", ["pending"])
    authority.script("pay_2", ["pending"])
    t = make_tracker(authority, membership, sink, clock)
    t.start_tracking("pay_1")
    t.start_tracking("pay_2")

    await t.dispose()

    assert len(t.registry) == 0
    assert t._scheduler.active_count == 0
    assert t.get_snapshot().tracked_ids == []
    calls = sum(authority.calls.values())
    await asyncio.sleep(0.03)
    assert sum(authority.calls.values()) == calls


def test_invalid_settings_raise():
    with pytest.raises(ConfigError):
        TrackerController(FakeAuthority(), FakeMembership(), FakeSink(),
                          settings=TrackerSettings(poll_interval_ms=100, max_poll_duration_ms=10))
