"""Confidentiality gateway - optional external transform of raw payloads.

When enabled, each raw payload is POSTed to ``<endpoint>/encrypt`` and the
``result`` field of the response replaces it.  Any failure yields a failed
:class:`GatewayResult`; the caller must drop the record rather than store it
unprotected.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import BaseModel

__all__ = ["ConfidentialityGateway", "GatewayResult"]

logger = logging.getLogger("mesh_ingest.gateway")

DEFAULT_TIMEOUT_S = 5.0


class GatewayResult(BaseModel):
    """Outcome of :meth:`ConfidentialityGateway.protect`.

    Exactly one of ``text`` (on success) or ``reason`` (on failure) is set.
    """

    ok: bool
    text: str | None = None
    reason: str | None = None

    @classmethod
    def success(cls, text: str) -> GatewayResult:
        return cls(ok=True, text=text)

    @classmethod
    def failure(cls, reason: str) -> GatewayResult:
        return cls(ok=False, reason=reason)


class ConfidentialityGateway:
    """Client for the external ``/encrypt`` transform service.

    Parameters:
        enabled: When ``False`` every payload passes through untouched and
                 no HTTP client is ever created.
        endpoint: Base URL of the transform service.
        timeout_s: Bound on the whole call in seconds, response body included.
        transport: Optional ``httpx`` transport (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        enabled: bool = False,
        endpoint: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.enabled = enabled
        self._endpoint = endpoint or None
        self._timeout = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def encrypt_url(self) -> str | None:
        if self._endpoint is None:
            return None
        return self._endpoint.rstrip("/") + "/encrypt"

    async def open(self) -> None:
        if not self.enabled or self._client is not None:
            return
        if self._endpoint is None:
            logger.warning("Encryption enabled but API URL not set - raw payloads will be dropped")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )
        logger.info("ConfidentialityGateway ready - target: %s", self.encrypt_url)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("ConfidentialityGateway closed")

    async def __aenter__(self) -> ConfidentialityGateway:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def protect(self, text: str) -> GatewayResult:
        """Return the protected form of *text*, or a failure describing why not."""
        if not self.enabled:
            return GatewayResult.success(text)

        url = self.encrypt_url
        if url is None:
            return self._fail("endpoint not configured")
        if self._client is None:
            raise RuntimeError("ConfidentialityGateway is not open")

        try:
            resp = await asyncio.wait_for(self._client.post(url, json={"text": text}), timeout=self._timeout)
        except asyncio.TimeoutError:
            return self._fail("request failed: timed out")
        except httpx.InvalidURL as exc:
            return self._fail(f"request creation failed: {exc}")
        except httpx.HTTPError as exc:
            return self._fail(f"request failed: {exc!r}")

        if resp.status_code != httpx.codes.OK:
            return self._fail(f"non-200 response: {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            return self._fail(f"decode failed: {exc}")

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, str):
            return self._fail("decode failed: response has no string 'result' field")

        logger.debug("POST %s - HTTP %d", url, resp.status_code)
        return GatewayResult.success(result)

    @staticmethod
    def _fail(reason: str) -> GatewayResult:
        logger.error("Confidentiality transform failed: %s", reason)
        return GatewayResult.failure(reason)
