"""
Upstream Client
===============

aiohttp transport for the remote label rendering service. Translates
network-level failures into the engine's retryable error types and leaves
status-code interpretation to the dispatcher.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
import asyncio

import aiohttp

from zpl_render.config.logging import get_logger
from zpl_render.core.errors import TransientNetworkError, UpstreamTimeout

logger = get_logger(__name__)


@dataclass
class UpstreamResponse:
    """Status, headers and raw body of one upstream reply."""

    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class UpstreamClient:
    """Client for posting label markup to the upstream rendering service."""

    def __init__(self, timeout: float = 25.0, connect_timeout: Optional[float] = 10.0):
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.logger: Any = logger.bind(component="upstream_client")
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout, connect=self.connect_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def post(self, url: str, body: str, headers: Dict[str, str]) -> UpstreamResponse:
        """
        POST label markup and read the full reply.

        Raises:
            UpstreamTimeout: If the request timed out
            TransientNetworkError: On connection, DNS or payload failures
        """
        session = await self._get_session()
        try:
            async with session.post(url, data=body.encode("utf-8"), headers=headers) as response:
                payload = await response.read()
                return UpstreamResponse(
                    status=response.status,
                    body=payload,
                    headers=dict(response.headers),
                )
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(f"Upstream request timed out: {url}") from e
        except aiohttp.ClientError as e:
            self.logger.debug("Upstream network error", url=url, error=str(e))
            raise TransientNetworkError(f"Upstream network error: {e}") from e
