"""
Render Engine
=============

Facade wiring cache, gate, transport, dispatcher, orchestrator and assembler
into the caller-facing operations: label preview, full document render,
label analysis and the upstream health probe.

Each engine owns its cache and gate, so independent engines can coexist.
"""

from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio
import random

from zpl_render.config.logging import get_logger
from zpl_render.config.settings import Settings, get_settings
from zpl_render.core.errors import ValidationError
from zpl_render.core.rendering.assembler import DocumentAssembler
from zpl_render.core.rendering.orchestrator import BatchConfig, BatchOrchestrator
from zpl_render.core.upstream.cache import RenderCache
from zpl_render.core.upstream.client import UpstreamClient
from zpl_render.core.upstream.dispatcher import UpstreamDispatcher
from zpl_render.core.upstream.gate import ConcurrencyGate
from zpl_render.core.zpl.segmenter import analyze_labels, count_labels, preview_target
from zpl_render.models.schemas import (
    LabelAnalysis,
    OutputFormat,
    RenderRequest,
    UpstreamHealthReport,
)

logger = get_logger(__name__)


class RenderEngine:
    """Entry point for rendering ZPL documents through the upstream service."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[UpstreamClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.settings = settings or get_settings()
        self.logger: Any = logger.bind(component="render_engine")

        self.cache = RenderCache(self.settings.cache_max_entries)
        self.gate = ConcurrencyGate(self.settings.max_concurrency)
        self._own_client = client is None
        self.client = client or UpstreamClient(timeout=self.settings.fetch_timeout)
        self.dispatcher = UpstreamDispatcher.from_settings(
            self.settings, self.client, self.cache, self.gate, sleep=sleep, rng=rng
        )
        self.orchestrator = BatchOrchestrator(
            self.dispatcher, BatchConfig.from_settings(self.settings), sleep=sleep
        )
        self.assembler = DocumentAssembler.from_settings(
            self.settings, self.orchestrator, self.dispatcher
        )

        self.logger.info(
            "Render engine initialized",
            endpoints=self.settings.endpoints,
            max_concurrency=self.gate.capacity,
            max_attempts=self.dispatcher.max_attempts,
            cache_max_entries=self.cache.max_entries,
        )

    async def close(self) -> None:
        """Close the HTTP transport if this engine created it."""
        if self._own_client:
            await self.client.close()
        self.logger.info("Render engine closed")

    async def render_preview(self, request: RenderRequest, label_index: int = 0) -> bytes:
        """
        Render one label of the document as a PNG.

        Args:
            request: Validated render request
            label_index: 0-based label to preview

        Returns:
            PNG bytes

        Raises:
            ValidationError: If label_index is outside the document
        """
        label_count = count_labels(request.zpl)
        if label_index < 0 or label_index >= label_count:
            raise ValidationError(
                f"Label index {label_index} out of range for {label_count} labels",
                label_count=label_count,
            )

        zpl, index_in_markup = preview_target(
            request.zpl, label_index, self.settings.preview_chunk_size
        )
        self.logger.info(
            "Rendering preview",
            label_index=label_index,
            label_count=label_count,
            chunked=zpl is not request.zpl,
        )
        return await self.dispatcher.dispatch(
            request.with_zpl(zpl), OutputFormat.IMAGE, index_in_markup
        )

    async def render_document(self, request: RenderRequest) -> bytes:
        """Render every label of the document into one PDF, in document order."""
        return await self.assembler.assemble(request)

    def analyze(self, zpl: str) -> LabelAnalysis:
        """Marker counts and segmentation summary for a document."""
        return analyze_labels(zpl)

    async def check_upstream(self) -> UpstreamHealthReport:
        """Probe each configured endpoint with one minimal render."""
        results = [await self.dispatcher.probe(base) for base in self.dispatcher.endpoints]
        healthy = sum(1 for r in results if r.ok)
        if healthy == len(results):
            status = "healthy"
        elif healthy == 0:
            status = "unhealthy"
        else:
            status = "degraded"
        return UpstreamHealthReport(status=status, endpoints=results)

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {"cache": self.cache.stats(), "gate": self.gate.stats()}
