# tracking/services/reconcile_service.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from tracking.enums import NotifyKind, Outcome, PaymentMethod, PaymentStatus
from utils.logger import logger as default_logger

MESSAGES: Dict[Tuple[Outcome, PaymentMethod], str] = {
    (Outcome.SETTLED, PaymentMethod.TRANSFER):
        "Your transfer has been validated! Your membership is now active.",
    (Outcome.SETTLED, PaymentMethod.CASH):
        "Your cash payment has been confirmed! Your membership is now active.",
    (Outcome.REJECTED, PaymentMethod.TRANSFER):
        "Your transfer was rejected. Please contact support for more information.",
    (Outcome.REJECTED, PaymentMethod.CASH):
        "Your cash payment was rejected. Please contact support for more information.",
    (Outcome.ESCALATED, PaymentMethod.TRANSFER):
        "Your payment is now under manual review by our team.",
    (Outcome.ESCALATED, PaymentMethod.CASH):
        "Your payment is now under manual review by our team.",
}

MSG_TIMEOUT = "Payment tracking ended. Check your membership again later."
MSG_STARTED = "Payment tracking started. We will notify you once it is validated."

_NOTIFY_KIND = {
    Outcome.SETTLED: NotifyKind.SUCCESS,
    Outcome.REJECTED: NotifyKind.ERROR,
    Outcome.ESCALATED: NotifyKind.INFO,
}


@dataclass(frozen=True)
class ReconciliationOutcome:
    kind: Outcome
    previous: Optional[PaymentStatus]
    fresh: PaymentStatus
    method: PaymentMethod
    anomaly: bool = False

    @property
    def terminal(self) -> bool:
        return self.kind in (Outcome.SETTLED, Outcome.REJECTED)

    @property
    def refresh_membership(self) -> bool:
        return self.kind is Outcome.SETTLED

    @property
    def notify_kind(self) -> Optional[NotifyKind]:
        return _NOTIFY_KIND.get(self.kind)

    @property
    def message(self) -> Optional[str]:
        return MESSAGES.get((self.kind, self.method))


class OutcomeReconciler:
    """
    Pure decision step: previous vs. fresh authority status -> outcome.

    Statuses are ordered pending < under_review < {completed, failed}.
    A backward move, or any move out of a terminal status, is an anomaly:
    it is logged and reported as UNCHANGED.
    """

    def __init__(self, logger=None) -> None:
        self._log = logger or default_logger

    def reconcile(
        self,
        previous: Optional[PaymentStatus],
        fresh: PaymentStatus,
        method: PaymentMethod,
        *,
        payment_id: str = "?",
    ) -> ReconciliationOutcome:
        if fresh == previous:
            return ReconciliationOutcome(Outcome.UNCHANGED, previous, fresh, method)

        if previous is not None and (previous.is_terminal or fresh.rank < previous.rank):
            self._log.warning(
                f"Status anomaly for payment {payment_id}: {previous.value} -> {fresh.value}, ignored"
            )
            return ReconciliationOutcome(Outcome.UNCHANGED, previous, fresh, method, anomaly=True)

        if fresh is PaymentStatus.COMPLETED:
            kind = Outcome.SETTLED
        elif fresh is PaymentStatus.FAILED:
            kind = Outcome.REJECTED
        elif fresh is PaymentStatus.UNDER_REVIEW:
            # first observation counts as a move out of pending
            kind = Outcome.ESCALATED
        else:
            kind = Outcome.UNCHANGED
        return ReconciliationOutcome(kind, previous, fresh, method)
