# tracking/enums.py
from enum import Enum

class PaymentMethod(str, Enum):
    TRANSFER = "transfer"
    CASH = "cash"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)

_STATUS_RANK = {
    PaymentStatus.PENDING: 0,
    PaymentStatus.UNDER_REVIEW: 1,
    PaymentStatus.COMPLETED: 2,
    PaymentStatus.FAILED: 2,
}

class Outcome(str, Enum):
    UNCHANGED = "unchanged"
    SETTLED = "settled"
    REJECTED = "rejected"
    ESCALATED = "escalated"

class NotifyKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"

class TrackState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    DONE_SUCCESS = "done_success"
    DONE_FAILURE = "done_failure"
    DONE_TIMEOUT = "done_timeout"
