# tracking/services/authority_service.py
from __future__ import annotations

from typing import Any, List, Optional

from infra.http_client import HttpError
from tracking.enums import PaymentStatus
from tracking.errors import ApiError, NotFoundError
from tracking.models import TrackedPayment, parse_payment
from tracking.services.endpoints import Endpoints
from utils.logger import logger as default_logger


class StatusAuthorityClient:
    """
    Request/response access to the payment authority.

    - get_payment_status: GET /api/payments/{id}
    - list_pending_payments: GET /api/payments?userId=..&status=pending
    """

    def __init__(self, http, endpoints: Optional[Endpoints] = None, *, logger=None) -> None:
        self._http = http
        self._ep = endpoints or Endpoints()
        self._log = logger or default_logger

    async def get_payment_status(self, payment_id: str) -> TrackedPayment:
        try:
            payload = await self._http.get(self._ep.payment_path(payment_id))
        except HttpError as e:
            if e.status == 404:
                raise NotFoundError("payment not found", payment_id=payment_id) from e
            raise
        row = _dig(payload, "data", "payment")
        if not isinstance(row, dict):
            raise ApiError(f"unexpected payment payload for {payment_id}", payload=payload)
        return parse_payment(row)

    async def list_pending_payments(self, user_id: str) -> List[TrackedPayment]:
        payload = await self._http.get(
            self._ep.payments,
            params={"userId": user_id, "status": PaymentStatus.PENDING.value},
        )
        rows = _dig(payload, "data", "payments")
        if rows is None:
            rows = payload.get("payments") or []
        out: List[TrackedPayment] = []
        for row in rows:
            try:
                out.append(parse_payment(row))
            except ApiError as e:
                self._log.warning(f"Skipping payment row {row.get('id', '?')}: {e}")
        return out


def _dig(payload: Any, *keys: str) -> Any:
    cur = payload
    for k in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(k)
    return cur
