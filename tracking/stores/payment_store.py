# tracking/stores/payment_store.py
from typing import Dict, List, Optional
from tracking.models import TrackedPayment

class PaymentStore:
    """
    In-memory mirror of authority payments keyed by payment id.

    The authority owns payment truth; this only remembers the last value seen
    plus the local notification watermark.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, TrackedPayment] = {}

    def upsert(self, payment: TrackedPayment) -> TrackedPayment:
        """Insert or refresh a mirror, keeping the local notification watermark."""
        cur = self._by_id.get(payment.id)
        if cur is not None and cur.last_notified_status is not None:
            payment.last_notified_status = cur.last_notified_status
        self._by_id[payment.id] = payment
        return payment

    def get(self, payment_id: str) -> Optional[TrackedPayment]:
        return self._by_id.get(payment_id)

    def remove(self, payment_id: str) -> None:
        self._by_id.pop(payment_id, None)

    def list_all(self) -> List[TrackedPayment]:
        return list(self._by_id.values())

    def clear(self) -> None:
        self._by_id.clear()
