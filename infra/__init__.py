from __future__ import annotations

import logging
from typing import Protocol, Mapping, Any, Optional, Dict

from infra.http_client import HttpClient, HttpError


# Services depend on this port, not on the concrete HttpClient.
class HttpPort(Protocol):
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]: ...
    async def post(self, path: str, json_body: Mapping[str, Any]) -> Dict[str, Any]: ...


class HttpContainer:
    """
    Owns the HttpClient for one authenticated login.
    - The composition root holds it.
    - Services receive `container.http`.
    """
    def __init__(self, http: HttpClient) -> None:
        self.http = http

    @classmethod
    async def start(cls,
                    cfg: Mapping[str, Any],
                    logger: Optional[logging.Logger] = None,
                    token: Optional[str] = None,
                    ) -> "HttpContainer":
        http = HttpClient(cfg, logger=logger, token=token)
        return cls(http)

    async def stop(self) -> None:
        await self.http.close()


__all__ = ["HttpPort", "HttpClient", "HttpError", "HttpContainer"]
