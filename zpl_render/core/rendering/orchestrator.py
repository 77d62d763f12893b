"""
Batch Orchestrator
==================

Turns a multi-label document into the smallest set of upstream calls:
identical labels are rendered once, unique labels are dispatched in
sequential batches with small intra-batch parallelism, and results are
re-expanded to the original label order and count.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar
import asyncio
import math
import uuid

from zpl_render.config.logging import get_logger
from zpl_render.config.settings import Settings
from zpl_render.core.errors import RenderError, is_rate_limited
from zpl_render.core.upstream.dispatcher import InstanceSlot, UpstreamDispatcher
from zpl_render.core.zpl.segmenter import LabelUnit, segment
from zpl_render.models.schemas import OutputFormat, RenderRequest

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BatchConfig:
    """Scheduling knobs for one document render."""

    batch_size: int = 2
    batch_delay_ms: int = 150
    pool_cap: int = 4
    labels_per_instance: int = 12
    rate_limit_retry_delay_ms: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchConfig":
        return cls(
            batch_size=settings.batch_size,
            batch_delay_ms=settings.batch_delay_ms,
            pool_cap=settings.instance_pool_cap,
            labels_per_instance=settings.labels_per_instance,
            rate_limit_retry_delay_ms=settings.rate_limit_retry_delay_ms,
        )

    def conservative(self, batch_delay_ms: int) -> "BatchConfig":
        """One label per batch with a longer pause, for retrying under rate limits."""
        return replace(self, batch_size=1, batch_delay_ms=max(self.batch_delay_ms, batch_delay_ms))


@dataclass
class DedupIndex:
    """Unique label units plus the original-position -> unique-index mapping."""

    unique_units: List[LabelUnit]
    ordinals: List[int]
    first_seen: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def build(cls, units: Sequence[LabelUnit]) -> "DedupIndex":
        first_seen: Dict[str, int] = {}
        unique_units: List[LabelUnit] = []
        ordinals: List[int] = []
        for unit in units:
            digest = unit.content_hash
            if digest not in first_seen:
                first_seen[digest] = len(unique_units)
                unique_units.append(unit)
            ordinals.append(first_seen[digest])
        return cls(unique_units=unique_units, ordinals=ordinals, first_seen=first_seen)

    @property
    def original_count(self) -> int:
        return len(self.ordinals)

    @property
    def unique_count(self) -> int:
        return len(self.unique_units)

    def expand(self, artifacts: Sequence[T]) -> List[T]:
        """Map per-unique artifacts back to one artifact per original label."""
        if len(artifacts) != self.unique_count:
            raise ValueError(
                f"Expected {self.unique_count} unique artifacts, got {len(artifacts)}"
            )
        return [artifacts[u] for u in self.ordinals]


@dataclass
class BatchResult:
    """Rendered artifacts for the unique units of a document."""

    artifacts: List[bytes]
    dedup: DedupIndex

    def ordered(self) -> List[bytes]:
        return self.dedup.expand(self.artifacts)


def pool_size_for(label_count: int, config: BatchConfig) -> int:
    """More logical instances for larger documents, capped."""
    return min(config.pool_cap, max(1, math.ceil(label_count / config.labels_per_instance)))


def make_batches(items: Sequence[T], batch_size: int) -> List[List[T]]:
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


class BatchOrchestrator:
    """Deduplicating, batch-sequential fan-out of label renders."""

    def __init__(
        self,
        dispatcher: UpstreamDispatcher,
        config: Optional[BatchConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.dispatcher = dispatcher
        self.config = config or BatchConfig()
        self._sleep = sleep
        self.logger: Any = logger.bind(component="batch_orchestrator")

    async def render_labels(
        self,
        request: RenderRequest,
        output_format: OutputFormat,
        config: Optional[BatchConfig] = None,
    ) -> BatchResult:
        """Segment ``request.zpl`` into labels and render each unique one."""
        units, _ = segment(request.zpl)
        return await self.render_units(request, units, output_format, config)

    async def render_units(
        self,
        request: RenderRequest,
        units: Sequence[LabelUnit],
        output_format: OutputFormat,
        config: Optional[BatchConfig] = None,
    ) -> BatchResult:
        """
        Render label units with deduplication and sequential batching.

        Args:
            request: Render parameters shared by every unit
            units: Ordered label units of one document
            output_format: Image or document renders
            config: Scheduling override for this call only

        Returns:
            BatchResult whose ``ordered()`` has one artifact per original unit
        """
        config = config or self.config
        dedup = DedupIndex.build(units)
        pool_size = pool_size_for(dedup.original_count, config)
        request_id = uuid.uuid4().hex
        instances = [InstanceSlot(id=i + 1, request_id=request_id) for i in range(pool_size)]
        batches = make_batches(list(enumerate(dedup.unique_units)), config.batch_size)

        self.logger.info(
            "Rendering label batches",
            request_id=request_id,
            labels=dedup.original_count,
            unique_labels=dedup.unique_count,
            instances=pool_size,
            batches=len(batches),
            batch_size=config.batch_size,
            output_format=output_format.value,
        )

        artifacts: List[bytes] = []
        for batch_number, batch in enumerate(batches):
            tasks = [
                asyncio.ensure_future(
                    self._render_unit(
                        request, unit, output_format, instances[unique_index % pool_size], config
                    )
                )
                for unique_index, unit in batch
            ]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                # One failed label fails the document; stop its siblings
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            artifacts.extend(results)

            if batch_number < len(batches) - 1 and config.batch_delay_ms > 0:
                await self._sleep(config.batch_delay_ms / 1000.0)

        self.logger.info(
            "Label batches completed", request_id=request_id, unique_labels=len(artifacts)
        )
        return BatchResult(artifacts=artifacts, dedup=dedup)

    async def _render_unit(
        self,
        request: RenderRequest,
        unit: LabelUnit,
        output_format: OutputFormat,
        instance: InstanceSlot,
        config: BatchConfig,
    ) -> bytes:
        unit_request = request.with_zpl(unit.zpl)
        try:
            return await self.dispatcher.dispatch(unit_request, output_format, None, instance)
        except RenderError as e:
            if not is_rate_limited(e):
                raise
            delay_ms = instance.id * config.rate_limit_retry_delay_ms
            self.logger.warning(
                "Rate limited label, retrying once",
                label=unit.index,
                instance=instance.id,
                delay_ms=delay_ms,
            )
            await self._sleep(delay_ms / 1000.0)
            return await self.dispatcher.dispatch(unit_request, output_format, None, instance)
