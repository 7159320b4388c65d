# tracking/event_bus.py
from typing import Any, Callable, Dict

from utils.logger import logger

class EventBus:
    """
    Lightweight pub/sub for payment status transitions.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, list[Callable[[Any], None]]] = {}

    def subscribe(self, topic: str, handler: Callable[[Any], None]) -> None:
        """Register a synchronous callback; wrap async handlers externally."""
        self._subs.setdefault(topic, []).append(handler)

    def unsubscribe(self, topic: str, handler: Callable[[Any], None]) -> None:
        handlers = self._subs.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, payload: Any) -> None:
        """Publish an event to subscribers (fire-and-forget)."""
        for h in list(self._subs.get(topic, [])):
            try:
                h(payload)
            except Exception:
                logger.exception(f"Subscriber failed on topic {topic}")

    def clear(self) -> None:
        self._subs.clear()

# Common topics
TOPIC_STATUS = "payment.status"
