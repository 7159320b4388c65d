# tracking/services/dedup_service.py
from typing import Optional

from tracking.enums import PaymentStatus
from tracking.stores.payment_store import PaymentStore
from utils.logger import logger as default_logger


class NotificationDeduplicator:
    """
    At most one user notification per (payment id, status).

    The watermark is TrackedPayment.last_notified_status in the payment store.
    It only moves forward; equal-or-earlier statuses are refused. Marking
    happens before the emit, so a failing sink loses that toast rather than
    repeating it (the authority still holds the correct state).
    """

    def __init__(self, store: PaymentStore, logger=None) -> None:
        self._store = store
        self._log = logger or default_logger

    def should_notify(self, payment_id: str, status: PaymentStatus) -> bool:
        if not self._is_ahead(payment_id, status):
            return False
        return self.mark_notified(payment_id, status)

    def mark_notified(self, payment_id: str, status: PaymentStatus) -> bool:
        payment = self._store.get(payment_id)
        if payment is None:
            self._log.warning(f"Cannot mark notification for unknown payment {payment_id}")
            return False
        if not self._is_ahead(payment_id, status):
            return False
        payment.last_notified_status = status
        return True

    def last_notified(self, payment_id: str) -> Optional[PaymentStatus]:
        payment = self._store.get(payment_id)
        return payment.last_notified_status if payment else None

    def _is_ahead(self, payment_id: str, status: PaymentStatus) -> bool:
        last = self.last_notified(payment_id)
        return last is None or status.rank > last.rank
