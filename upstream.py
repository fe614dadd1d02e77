"""Upstream HTTP communication shared by the provider adapters."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Dict, Tuple

import httpx

from config import AppConfig
from errors import ProviderSetupError

log = logging.getLogger("chat_gateway")


class UpstreamClient:
    """Open streaming requests against provider APIs.

    Every call gets its own httpx.AsyncClient so per-provider transport policy
    (TLS verification in particular) stays scoped to that call.
    """

    def __init__(
        self,
        config: AppConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def get_timeout(self) -> httpx.Timeout:
        """Bound connection setup only; no read timeout to avoid killing long pauses."""
        connect_timeout = min(30.0, float(self._config.request_timeout_s))
        return httpx.Timeout(
            connect=connect_timeout, write=connect_timeout, pool=connect_timeout, read=None
        )

    def build_client(self, verify: bool = True) -> httpx.AsyncClient:
        """Create a client dedicated to a single upstream call."""
        return httpx.AsyncClient(
            timeout=self.get_timeout(),
            verify=verify,
            transport=self._transport,
        )

    async def open_stream(
        self,
        provider: str,
        url: str,
        *,
        headers: Dict[str, str],
        payload: Dict[str, Any],
        verify: bool = True,
        params: Dict[str, str] | None = None,
    ) -> Tuple[httpx.AsyncClient, httpx.Response]:
        """
        POST `payload` and return the still-open streaming response with its client.

        Raises ProviderSetupError when the request cannot be sent or the
        status is not 200. The caller owns closing both on success.
        """
        h = {"Content-Type": "application/json", "User-Agent": self._config.user_agent}
        h.update(headers)

        client = self.build_client(verify=verify)
        t0 = time.time()
        try:
            req = client.build_request("POST", url, headers=h, json=payload, params=params)
            resp = await client.send(req, stream=True)
        except httpx.HTTPError as e:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise ProviderSetupError(provider, f"{type(e).__name__}: {e}") from e
        except asyncio.CancelledError:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise

        dt = (time.time() - t0) * 1000
        log.info("Upstream chat provider=%s status=%s ms=%.1f", provider, resp.status_code, dt)

        if resp.status_code != 200:
            snippet = await self.read_error_snippet(resp)
            log.warning(
                "Upstream chat error provider=%s status=%s content-type=%s",
                provider,
                resp.status_code,
                resp.headers.get("content-type", ""),
            )
            with contextlib.suppress(Exception):
                await resp.aclose()
            with contextlib.suppress(Exception):
                await client.aclose()
            raise ProviderSetupError(
                provider,
                f"{provider} API error: {resp.status_code} {resp.reason_phrase} {snippet}".strip(),
            )

        return client, resp

    @staticmethod
    async def read_error_snippet(
        resp: httpx.Response, limit: int = 2000, timeout_s: float = 2.0
    ) -> str:
        """Best-effort: read small error body without risking a hang."""
        try:
            raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
        except (asyncio.TimeoutError, httpx.HTTPError):
            return ""
        return raw.decode("utf-8", errors="replace")[:limit]
