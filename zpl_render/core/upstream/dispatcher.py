"""
Upstream Dispatcher
===================

Executes one render against the upstream service: cache lookup, endpoint
rotation, admission through the concurrency gate, per-call timeout and
retry with exponential backoff on 429/5xx, timeouts and network failures.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Mapping, Optional
import asyncio
import math
import random
import time
import uuid

from zpl_render.config.logging import get_logger
from zpl_render.config.settings import Settings
from zpl_render.core.errors import (
    ExhaustedRetries,
    FatalUpstreamError,
    RetryableUpstreamError,
    UpstreamTimeout,
)
from zpl_render.core.upstream.cache import RenderCache, build_cache_key
from zpl_render.core.upstream.client import UpstreamClient
from zpl_render.core.upstream.gate import ConcurrencyGate
from zpl_render.models.schemas import EndpointHealth, OutputFormat, RenderRequest

logger = get_logger(__name__)

MAX_BACKOFF_MS = 8000
JITTER_MS = 250
BASE_DELAY_MS = 350
INSTANCE_STAGGER_MS = 75

# Rotated per instance and attempt to diversify request fingerprints
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/126 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_5) AppleWebKit/605.1.15 Version/16.5 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/125 Safari/537.36",
    "Mozilla/5.0 (iPad; CPU OS 16_4 like Mac OS X) AppleWebKit/605.1.15 Version/16.4 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0",
]

PROBE_ZPL = "^XA^FO50,50^ADN,36,20^FDTEST^FS^XZ"
PROBE_PATH = "/v1/printers/8dpmm/labels/4x6/0"


@dataclass(frozen=True)
class InstanceSlot:
    """
    Logical worker identity used to vary request headers and stagger backoff.

    Not a connection or a thread; real concurrency is bounded by the gate.
    """

    id: int = 1
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def compute_backoff(attempt: int, base_ms: float, rng: Callable[[], float] = random.random) -> int:
    """Exponential backoff in milliseconds with up to ``JITTER_MS`` of jitter, capped."""
    jitter = math.floor(rng() * JITTER_MS)
    return min(MAX_BACKOFF_MS, math.floor(base_ms * 2**attempt) + jitter)


def instance_base_delay(instance_id: int) -> int:
    return BASE_DELAY_MS + instance_id * INSTANCE_STAGGER_MS


def parse_retry_after(headers: Mapping[str, str]) -> int:
    """``Retry-After`` in milliseconds; 0 when absent or not a number of seconds."""
    for name, value in headers.items():
        if name.lower() == "retry-after":
            try:
                return max(0, int(str(value).strip())) * 1000
            except ValueError:
                return 0
    return 0


def format_dimension(value: float) -> str:
    return f"{value:g}"


def build_label_path(
    request: RenderRequest, output_format: OutputFormat, label_index: Optional[int] = None
) -> str:
    """Upstream path for a render; the label index only applies to image renders."""
    path = (
        f"/v1/printers/{request.dpmm}dpmm/labels/"
        f"{format_dimension(request.width_in)}x{format_dimension(request.height_in)}/"
        f"{request.orientation.path_value}"
    )
    if output_format is OutputFormat.IMAGE and label_index is not None:
        path += f"/{label_index}"
    return path


class UpstreamDispatcher:
    """Single-call execution against a rotating list of upstream endpoints."""

    def __init__(
        self,
        endpoints: List[str],
        client: UpstreamClient,
        cache: RenderCache,
        gate: ConcurrencyGate,
        max_attempts: int = 6,
        timeout: float = 25.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        if not endpoints:
            raise ValueError("At least one upstream endpoint is required")
        self.endpoints = [e.rstrip("/") for e in endpoints]
        self.client = client
        self.cache = cache
        self.gate = gate
        self.max_attempts = max(1, max_attempts)
        self.timeout = max(1.0, timeout)
        self._sleep = sleep
        self._rng = rng
        self.logger: Any = logger.bind(component="upstream_dispatcher")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: UpstreamClient,
        cache: RenderCache,
        gate: ConcurrencyGate,
        **kwargs: Any,
    ) -> "UpstreamDispatcher":
        return cls(
            endpoints=settings.endpoints,
            client=client,
            cache=cache,
            gate=gate,
            max_attempts=settings.max_attempts,
            timeout=settings.fetch_timeout,
            **kwargs,
        )

    def endpoint_for(self, instance_id: int, attempt: int) -> str:
        """Rotate across endpoints by instance and attempt."""
        return self.endpoints[(instance_id - 1 + attempt) % len(self.endpoints)]

    def build_headers(
        self, output_format: OutputFormat, instance: InstanceSlot, attempt: int
    ) -> dict[str, str]:
        return {
            "Accept": output_format.mime_type,
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": USER_AGENTS[(instance.id + attempt) % len(USER_AGENTS)],
            "X-API-Instance": f"Render-Instance-{instance.id}",
            "X-Request-Priority": "high" if instance.id == 1 else "normal",
            "X-Request-ID": instance.request_id,
        }

    async def dispatch(
        self,
        request: RenderRequest,
        output_format: OutputFormat,
        label_index: Optional[int] = None,
        instance: Optional[InstanceSlot] = None,
    ) -> bytes:
        """
        Render ``request`` upstream, serving repeats from the cache.

        Args:
            request: Validated render request
            output_format: Image (PNG) or document (PDF)
            label_index: Label to render for image requests
            instance: Logical instance for headers, rotation and backoff stagger

        Returns:
            Rendered bytes

        Raises:
            FatalUpstreamError: On non-retryable HTTP statuses
            ExhaustedRetries: When every attempt failed with a retryable error
        """
        instance = instance or InstanceSlot()
        key = build_cache_key(request, output_format, label_index)

        cached = self.cache.get(key)
        if cached is not None:
            self.logger.debug("Render served from cache", instance=instance.id, key=key[:48])
            return cached

        path = build_label_path(request, output_format, label_index)
        base_delay = instance_base_delay(instance.id)
        last_status: Optional[int] = None
        last_body = ""
        rate_limited = False

        for attempt in range(self.max_attempts):
            url = f"{self.endpoint_for(instance.id, attempt)}{path}"
            headers = self.build_headers(output_format, instance, attempt)

            self.logger.debug(
                "Dispatching upstream render",
                instance=instance.id,
                attempt=attempt + 1,
                max_attempts=self.max_attempts,
                url=url,
            )

            try:
                async with self.gate.slot():
                    response = await asyncio.wait_for(
                        self.client.post(url, request.zpl, headers), timeout=self.timeout
                    )
            except (RetryableUpstreamError, asyncio.TimeoutError, OSError) as e:
                if isinstance(e, asyncio.TimeoutError):
                    e = UpstreamTimeout(f"Timeout after {self.timeout:g}s")
                delay_ms = compute_backoff(attempt, base_delay, self._rng)
                self.logger.warning(
                    "Upstream attempt failed",
                    instance=instance.id,
                    attempt=attempt + 1,
                    error=str(e),
                    backoff_ms=delay_ms,
                )
            else:
                if response.ok:
                    self.cache.put(key, response.body)
                    self.logger.debug(
                        "Upstream render succeeded",
                        instance=instance.id,
                        attempt=attempt + 1,
                        size=len(response.body),
                    )
                    return response.body

                status = response.status
                text = response.text
                if status == 429 or 500 <= status < 600:
                    last_status = status
                    last_body = text
                    rate_limited = rate_limited or status == 429
                    delay_ms = max(
                        parse_retry_after(response.headers),
                        compute_backoff(attempt, base_delay, self._rng),
                    )
                    self.logger.warning(
                        "Upstream attempt rejected",
                        instance=instance.id,
                        attempt=attempt + 1,
                        status=status,
                        body=text[:180],
                        backoff_ms=delay_ms,
                    )
                else:
                    self.logger.error(
                        "Upstream render failed", instance=instance.id, status=status, body=text[:180]
                    )
                    raise FatalUpstreamError(
                        f"Upstream API error: {status} - {text[:180]}", status=status, body=text
                    )

            if attempt < self.max_attempts - 1:
                await self._sleep(delay_ms / 1000.0)

        self.logger.error(
            "Upstream retries exhausted",
            instance=instance.id,
            attempts=self.max_attempts,
            last_status=last_status,
            rate_limited=rate_limited,
        )
        raise ExhaustedRetries(
            self.max_attempts, last_status=last_status, rate_limited=rate_limited, body=last_body
        )

    async def probe(self, base_url: str) -> EndpointHealth:
        """One minimal image render against ``base_url``, without retries or caching."""
        url = f"{base_url.rstrip('/')}{PROBE_PATH}"
        headers = {
            "Accept": OutputFormat.IMAGE.mime_type,
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": "ZPL-Render-Healthz",
        }
        started = time.monotonic()
        status = 0
        ok = False
        error: Optional[str] = None
        try:
            async with self.gate.slot():
                response = await asyncio.wait_for(
                    self.client.post(url, PROBE_ZPL, headers), timeout=self.timeout
                )
            status = response.status
            ok = response.ok
        except (RetryableUpstreamError, asyncio.TimeoutError, OSError) as e:
            error = str(e) or e.__class__.__name__
        elapsed_ms = int((time.monotonic() - started) * 1000)

        self.logger.info(
            "Probed upstream endpoint", base_url=base_url, status=status, ok=ok, error=error
        )
        return EndpointHealth(
            base_url=base_url, ok=ok, status=status, error=error, elapsed_ms=elapsed_ms
        )
