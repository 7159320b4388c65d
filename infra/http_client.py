from __future__ import annotations

import aiohttp
import asyncio
import json
import random
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode
import logging

from tracking.errors import ApiError, NetworkError
from utils.logger import logger

JSON_SEPARATORS = (",", ":")

class HttpError(Exception):
    def __init__(self, status: int, message: str, payload: Optional[dict] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.payload = payload or {}


def _json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=JSON_SEPARATORS, ensure_ascii=False, default=str)

def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    clean = {k: v for k, v in params.items() if v is not None}
    if not clean:
        return ""
    return "?" + urlencode(clean, doseq=True, safe=":/,")

def _mask(s: Optional[str]) -> str:
    if not s:
        return ""
    if len(s) <= 8:
        return "*" * len(s)
    return s[:4] + "*" * (len(s) - 8) + s[-4:]

class HttpClient:
    def __init__(self,
                 cfg: Mapping[str, Any],
                 logger: Optional[logging.Logger] = None,
                 token: Optional[str] = None,
                 *,
                 timeout_ms: Optional[int] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 ) -> None:
        self.cfg = cfg
        self.log = logger or logging.getLogger("HttpClient")
        self.session = session
        self._owned_session = session is None

        api_cfg = cfg.get("api", {}) or {}
        self.base_url = str(api_cfg.get("base_url", "http://localhost:3000")).rstrip("/")
        self.token = token if token is not None else (api_cfg.get("token") or None)

        # timeouts & retries
        timeouts_cfg = cfg.get("timeouts", {}) or {}
        retries_cfg = cfg.get("retries", {}) or {}
        self.timeout_ms = int(timeout_ms or timeouts_cfg.get("rest_ms", 5000))
        self.max_attempts = int(retries_cfg.get("rest_max_attempts", 3))
        self.backoff_ms = int(retries_cfg.get("backoff_ms", 200))

        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)

        self.log.debug(
            f"HttpClient init base_url={self.base_url} token={_mask(self.token)}"
        )

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        if self._owned_session and (self.session is None or self.session.closed):
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def set_token(self, token: Optional[str]) -> None:
        """Swap the bearer token after login/logout."""
        self.token = token or None

    def _build_auth_headers(self) -> Dict[str, str]:
        if not self.token:
            raise HttpError(401, "missing API token")
        return {"Authorization": f"Bearer {self.token}"}

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            json_body: Optional[Mapping[str, Any]] = None,
            auth: bool = True,
            headers: Optional[Mapping[str, str]] = None,
            expect_envelope: bool = True,
            timeout_ms: Optional[int] = None,
            retry: bool = True,
        ) -> Dict[str, Any]:
        """
        Single request entry point.
        - method: "GET" | "POST" | "DELETE" | "PUT"
        - path: starts with "/api/..."
        - params: querystring (None values dropped)
        - json_body: JSON request body
        - auth: inject the bearer token header
        - expect_envelope: response is {"success", "message", "data"}; success=false raises ApiError
        - timeout_ms: override the session timeout
        - retry: exponential backoff on 429/5xx and network errors
        """
        assert path.startswith("/api/"), "path must start with /api/"
        method = method.upper()
        url = self.base_url + path + _build_query(params)
        body_str = _json_dumps_compact(json_body) if json_body else ""
        req_headers = {
            "Content-Type": "application/json", "Accept": "application/json"
        }
        if headers:
            req_headers.update(headers)
        if auth:
            req_headers.update(self._build_auth_headers())

        # without an override the session timeout (timeouts.rest_ms) applies
        req_kwargs: Dict[str, Any] = {}
        if timeout_ms:
            req_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.session.request(
                    method,
                    url,
                    data=body_str if body_str else None,
                    headers=req_headers,
                    **req_kwargs,
                ) as resp:
                    text = await resp.text()
                    status = resp.status
                    if status >= 400:
                        if retry and (status >= 500 or status == 429) and attempt < self.max_attempts:
                            await self._sleep_backoff(attempt)
                            continue
                        raise HttpError(status, text)

                    try:
                        payload = json.loads(text) if text else {}
                    except json.JSONDecodeError:
                        if expect_envelope:
                            raise ApiError(f"invalid json: {text[:256]}", status=status)
                        return {"raw": text}

                    if expect_envelope:
                        if not isinstance(payload, dict) or payload.get("success") is not True:
                            msg = payload.get("message", "") if isinstance(payload, dict) else ""
                            raise ApiError(msg or "request not successful", status=status,
                                           payload=payload if isinstance(payload, dict) else None)
                    return payload
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if retry and attempt < self.max_attempts:
                    logger.warning(f"Network error: {e} when requesting {url}, retrying...")
                    await self._sleep_backoff(attempt)
                    continue
                raise NetworkError(f"Network error: {e}", url=url) from e

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, self.backoff_ms)
        await asyncio.sleep((base + jitter) / 1000.0)

    # ---- convenience wrappers -----------------------------------------------------
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json_body: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", path, json_body=json_body)
