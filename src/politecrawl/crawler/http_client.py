"""
Outbound HTTP transport built on aiohttp.

The transport only moves bytes: it attaches the crawler's identity headers,
enforces the per-request timeout and maps aiohttp failures onto
``TransportError``. Policy, scheduling and caching live in the orchestrator.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import aiohttp
import structlog

from politecrawl.config.config import CrawlerConfig
from politecrawl.exceptions import TransportError

logger = structlog.get_logger(__name__)


@dataclass
class TransportResponse:
    """Raw response from the network with timing information."""

    status: int
    reason: str
    headers: Dict[str, str]
    body: bytes
    url: str
    final_url: str
    elapsed: float

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class HttpTransport:
    """Shared aiohttp session with the crawler's identifying headers."""

    def __init__(self, config: CrawlerConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.request_count = 0

    @property
    def default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "From": self.config.contact_info,
            "Accept": self.config.accept,
            "Accept-Language": self.config.accept_language,
        }

    async def initialize(self) -> None:
        """Create the HTTP session if one was not injected."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=0, ttl_dns_cache=30, enable_cleanup_closed=True),
                headers=self.default_headers,
            )
            self._owns_session = True
            logger.debug("HTTP transport session initialized", user_agent=self.config.user_agent)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HttpTransport":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        data: Optional[bytes] = None,
    ) -> TransportResponse:
        """
        Perform one HTTP request.

        Args:
            method: HTTP method (GET or POST)
            url: Absolute URL
            headers: Extra headers, merged over the identity headers
            timeout: Total timeout in seconds (None = configured default)
            data: Optional request body

        Returns:
            TransportResponse for any status code

        Raises:
            TransportError: on timeout or connection-level failure
        """
        await self.initialize()
        assert self._session is not None

        merged = dict(self.default_headers)
        if headers:
            merged.update(headers)
        timeout = timeout if timeout is not None else self.config.timeout

        self.request_count += 1
        start = time.perf_counter()
        try:
            async with asyncio.timeout(timeout):
                async with self._session.request(
                    method.upper(),
                    url,
                    headers=merged,
                    data=data,
                    allow_redirects=True,
                ) as response:
                    body = await response.read()
                    return TransportResponse(
                        status=response.status,
                        reason=response.reason or "",
                        headers=dict(response.headers),
                        body=body,
                        url=url,
                        final_url=str(response.url),
                        elapsed=time.perf_counter() - start,
                    )
        except asyncio.TimeoutError as e:
            logger.warning("Request timed out", url=url, timeout=timeout)
            raise TransportError(f"Request timed out after {timeout}s", url=url, timeout=True) from e
        except aiohttp.ClientError as e:
            logger.warning("Request failed", url=url, error=str(e))
            raise TransportError(f"Network error: {e}", url=url) from e

    def get_stats(self) -> Dict[str, object]:
        return {
            "requests_sent": self.request_count,
            "session_open": self._session is not None and not self._session.closed,
        }
