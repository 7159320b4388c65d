# tracking/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from tracking.enums import Outcome, PaymentMethod, PaymentStatus, TrackState
from tracking.errors import ApiError


@dataclass
class TrackedPayment:
    id: str
    method: PaymentMethod
    status: PaymentStatus      # authority value, never inferred locally
    amount: Decimal
    created_at: Optional[datetime] = None
    last_notified_status: Optional[PaymentStatus] = None

    # validation metadata as reported by the authority
    transfer_validated: Optional[bool] = None
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None


@dataclass
class TrackingSession:
    payment_id: str
    started_at: int            # ms, tracker clock
    is_active: bool = False
    in_flight: bool = False


@dataclass
class MembershipSnapshot:
    id: str
    status: str
    plan: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusChange:
    payment_id: str
    previous: Optional[PaymentStatus]
    current: PaymentStatus
    outcome: Outcome
    payment: TrackedPayment


@dataclass
class TrackerSnapshot:
    tracked_ids: list[str]
    elapsed_ms: Dict[str, int]
    remaining_ms: Dict[str, int]
    states: Dict[str, TrackState]
    changed: bool
    last_update: Optional[Dict[str, Any]] = None

    @property
    def is_tracking(self) -> bool:
        return bool(self.tracked_ids)


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


def _parse_date(value: Any) -> Optional[date]:
    dt = _parse_dt(value)
    return dt.date() if dt else None


def _parse_amount(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ApiError(f"invalid amount: {value!r}") from e


def parse_payment(row: Dict[str, Any]) -> TrackedPayment:
    """
    Map an authority payment row onto TrackedPayment.

    Accepts both `paymentMethod` and `method`. Raises ApiError when the row
    has no id/status or carries a method/status outside the tracked vocabulary
    (card payments settle synchronously and are never tracked).
    """
    pid = row.get("id")
    status_raw = row.get("status")
    if pid is None or not status_raw:
        raise ApiError("payment row missing id/status", payload=row)
    method_raw = row.get("paymentMethod") or row.get("method")
    try:
        status = PaymentStatus(str(status_raw))
    except ValueError as e:
        raise ApiError(f"unknown payment status: {status_raw!r}", payload=row) from e
    try:
        method = PaymentMethod(str(method_raw))
    except ValueError as e:
        raise ApiError(f"untracked payment method: {method_raw!r}", payload=row) from e

    validated = row.get("transferValidated")
    return TrackedPayment(
        id=str(pid),
        method=method,
        status=status,
        amount=_parse_amount(row.get("amount")),
        created_at=_parse_dt(row.get("createdAt")),
        transfer_validated=bool(validated) if validated is not None else None,
        validated_by=row.get("validatedBy"),
        validated_at=_parse_dt(row.get("validatedAt")),
    )


def parse_membership(row: Dict[str, Any]) -> MembershipSnapshot:
    plan = row.get("plan")
    if isinstance(plan, dict):
        plan = plan.get("name") or plan.get("id")
    return MembershipSnapshot(
        id=str(row.get("id", "")),
        status=str(row.get("status", "")),
        plan=str(plan) if plan is not None else row.get("type"),
        start_date=_parse_date(row.get("startDate")),
        end_date=_parse_date(row.get("endDate")),
        raw=row,
    )
