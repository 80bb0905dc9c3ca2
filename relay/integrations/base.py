"""
Shared pieces for outbound destination clients.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict

import httpx

from relay.config import DestinationProfile
from relay.exceptions import ConfigError, DeliveryError
from relay.logging_setup import get_logger
from relay.observability import OUTBOUND_LATENCY

log = get_logger()


def contact_id_str(value: Any) -> str | None:
    """Remote ids come back as strings or numbers; callers always see a string."""
    return None if value is None else str(value)


@dataclass
class DeliveryResult:
    ok: bool
    status: str  # created | updated | sent | failed
    contact_id: str | None = None
    status_code: int | None = None
    data: Any = None
    error: Any = None

    @classmethod
    def failed(cls, error: Any, status_code: int | None = None) -> "DeliveryResult":
        return cls(ok=False, status="failed", status_code=status_code, error=error)

    def raise_for_failure(self) -> "DeliveryResult":
        """Return self when ok, otherwise raise DeliveryError carrying the remote error."""
        if not self.ok:
            code = f" (HTTP {self.status_code})" if self.status_code else ""
            raise DeliveryError(f"Delivery failed{code}", error=self.error, status_code=self.status_code)
        return self

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"status": self.status}
        if self.contact_id:
            out["id"] = self.contact_id
        if self.error is not None:
            out["error"] = self.error
        return out


def response_body(resp: httpx.Response) -> Any:
    """Remote body verbatim: JSON when it parses, raw text otherwise."""
    try:
        return resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"


class BaseClient:
    """
    One client per request. Owns the AsyncClient lifetime.
    `transport` lets tests swap the network for httpx.MockTransport.
    """

    def __init__(self, profile: DestinationProfile, transport: httpx.AsyncBaseTransport | None = None):
        if not profile.token:
            raise ConfigError(f"{profile.token_env} not configured")
        self.profile = profile
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.profile.token}",
            "Content-Type": "application/json",
        }

    async def __aenter__(self) -> "BaseClient":
        self._client = httpx.AsyncClient(
            base_url=self.profile.base_url.rstrip("/"),
            headers=self._headers(),
            timeout=self.profile.timeout_s,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Single attempt, no retry. Transport errors and timeouts propagate as httpx.HTTPError."""
        if self._client is None:
            raise RuntimeError("client used outside of 'async with'")
        t0 = time.perf_counter()
        try:
            return await self._client.request(method, path, **kwargs)
        finally:
            OUTBOUND_LATENCY.labels(destination=self.profile.name).observe(time.perf_counter() - t0)
