# tracking/services/membership_service.py
from __future__ import annotations

from datetime import date
from typing import Optional

from infra.http_client import HttpError
from tracking.models import MembershipSnapshot, parse_membership
from tracking.services.endpoints import Endpoints
from utils.logger import logger


class MembershipService:
    """
    Cached read of the user's current membership.

    The tracker only ever calls invalidate(); reads belong to the UI layer.
    """

    def __init__(self, http, endpoints: Optional[Endpoints] = None) -> None:
        self._http = http
        self._ep = endpoints or Endpoints()
        self._snapshot: Optional[MembershipSnapshot] = None
        self._loaded = False

    async def get_current_membership(self) -> Optional[MembershipSnapshot]:
        if self._loaded:
            return self._snapshot
        try:
            payload = await self._http.get(self._ep.membership_current)
        except HttpError as e:
            if e.status == 404:
                self._snapshot, self._loaded = None, True
                return None
            raise
        row = (payload.get("data") or {}).get("membership")
        self._snapshot = parse_membership(row) if isinstance(row, dict) else None
        self._loaded = True
        return self._snapshot

    async def invalidate(self) -> None:
        logger.debug("Membership snapshot invalidated")
        self._snapshot = None
        self._loaded = False

    async def refetch(self) -> Optional[MembershipSnapshot]:
        await self.invalidate()
        return await self.get_current_membership()

    def has_active_membership(self, today: Optional[date] = None) -> bool:
        m = self._snapshot
        if m is None or m.status != "active" or m.end_date is None:
            return False
        return m.end_date > (today or date.today())
