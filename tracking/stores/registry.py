# tracking/stores/registry.py
from typing import Dict, Iterator, List, Optional
from tracking.models import TrackingSession

class TrackerRegistry:
    """
    Active polling sessions keyed by payment id, one registry per
    authenticated login. Owned and mutated by TrackerController only.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, TrackingSession] = {}

    def add(self, session: TrackingSession) -> None:
        if session.payment_id in self._sessions:
            raise KeyError(f"Session already registered: {session.payment_id}")
        self._sessions[session.payment_id] = session

    def get(self, payment_id: str) -> Optional[TrackingSession]:
        return self._sessions.get(payment_id)

    def remove(self, payment_id: str) -> Optional[TrackingSession]:
        return self._sessions.pop(payment_id, None)

    def ids(self) -> List[str]:
        return list(self._sessions.keys())

    def sessions(self) -> List[TrackingSession]:
        return list(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()

    def __contains__(self, payment_id: object) -> bool:
        return payment_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
