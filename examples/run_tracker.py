# examples/run_tracker.py
import asyncio
import sys

from infra import HttpContainer
from tracking.app.tracker_api import TrackerController
from tracking.config import settings_from_cfg
from tracking.services.authority_service import StatusAuthorityClient
from tracking.services.endpoints import make_endpoints_from_cfg
from tracking.services.membership_service import MembershipService
from tracking.services.notification_service import LoggingNotificationSink
from utils import logger, load_cfg


async def main(payment_ids: list[str]):
    cfg = load_cfg()
    settings = settings_from_cfg(cfg)
    endpoints = make_endpoints_from_cfg(cfg)

    container = await HttpContainer.start(cfg, logger)
    authority = StatusAuthorityClient(container.http, endpoints)
    membership = MembershipService(container.http, endpoints)
    tracker = TrackerController(authority, membership, LoggingNotificationSink(), settings=settings)

    tracker.on_status_change(lambda ch: logger.info(
        f"[STATUS] {ch.payment_id}: {ch.previous} -> {ch.current.value} ({ch.outcome.value})"
    ))

    try:
        for pid in payment_ids:
            tracker.start_tracking(pid)
        if settings.user_id:
            await tracker.refresh()
            logger.info(f"Pending summary: {tracker.pending_summary()}")

        while tracker.get_snapshot().tracked_ids:
            await asyncio.sleep(settings.poll_interval_ms / 1000)

        current = await membership.get_current_membership()
        logger.info(f"Current membership: {current}")
    finally:
        await tracker.dispose()
        await container.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main(sys.argv[1:]))
    except (KeyboardInterrupt, SystemExit):
        logger.info("Tracker stopped")
