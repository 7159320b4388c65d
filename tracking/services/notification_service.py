# tracking/services/notification_service.py
from typing import Awaitable, Callable, Protocol

from tracking.enums import NotifyKind
from utils.logger import logger


class NotificationSink(Protocol):
    async def notify(self, kind: NotifyKind, message: str) -> None: ...


class LoggingNotificationSink:
    """Writes user notifications to the log; useful headless and in examples."""

    async def notify(self, kind: NotifyKind, message: str) -> None:
        if kind is NotifyKind.ERROR:
            logger.warning(f"[NOTIFY {kind.value}] {message}")
        else:
            logger.info(f"[NOTIFY {kind.value}] {message}")


class CallbackNotificationSink:
    """Forwards notifications to an async callable, e.g. a bot send_message wrapper."""

    def __init__(self, callback: Callable[[NotifyKind, str], Awaitable[None]]) -> None:
        self._cb = callback

    async def notify(self, kind: NotifyKind, message: str) -> None:
        await self._cb(kind, message)
