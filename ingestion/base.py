"""Base HTTP client with httpx, rate limiting and fixed-interval retries."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

log = logging.getLogger(__name__)


class SourceError(RuntimeError):
    """An upstream HTTP source kept failing after its retry budget."""


class BaseClient:
    """Shared plumbing for the outbound API clients.

    Subclasses set ``name`` and may tune the class-level policy; every knob can
    also be overridden per instance so tests can inject a zero backoff or a
    fake transport.
    """

    #: Source identifier used in logs, e.g. "ticketmaster".
    name: str = ""

    #: Minimum seconds between requests.
    rate_limit: float = 1.0

    #: Maximum attempts per request.
    max_retries: int = 3

    #: Fixed seconds to wait between attempts.
    retry_backoff: float = 2.0

    #: Seconds before an outbound request is abandoned.
    timeout: float = 30.0

    def __init__(
        self,
        *,
        headers: dict[str, str] | None = None,
        rate_limit: float | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not self.name:
            raise ValueError("Client subclass must set 'name'")
        if rate_limit is not None:
            self.rate_limit = rate_limit
        if max_retries is not None:
            self.max_retries = max(1, max_retries)
        if retry_backoff is not None:
            self.retry_backoff = retry_backoff
        self._headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._last_request: float = 0.0
        self._throttle = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self._headers,
                follow_redirects=True,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _rate_limit_wait(self) -> None:
        async with self._throttle:
            loop = asyncio.get_running_loop()
            elapsed = loop.time() - self._last_request
            if elapsed < self.rate_limit:
                await asyncio.sleep(self.rate_limit - elapsed)
            self._last_request = loop.time()

    async def fetch_json(self, url: str, **kwargs: Any) -> tuple[Any, httpx.Headers]:
        """GET *url* and decode its JSON body, with rate limiting and retries.

        A transport error, a non-2xx status or an undecodable body each count
        as one failed attempt. After ``max_retries`` attempts a
        :class:`SourceError` is raised. Returns the decoded body together with
        the response headers.
        """
        client = await self._ensure_client()
        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            await self._rate_limit_wait()
            try:
                resp = await client.get(url, **kwargs)
                resp.raise_for_status()
                return resp.json(), resp.headers
            except (httpx.HTTPStatusError, httpx.TransportError, ValueError) as exc:
                last_exc = exc
                log.warning(
                    "[%s] attempt %d/%d failed: %s", self.name, attempt, self.max_retries, exc
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_backoff)
        raise SourceError(
            f"[{self.name}] {url} failed after {self.max_retries} attempts"
        ) from last_exc

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
