"""
Document Assembler
==================

Merges per-label artifacts into one PDF whose page count and order match
the labels of the source document.

Strategies:
- pdf_merge: render each unique label as a PDF and copy its pages (pypdf)
- png_embed: render each unique label as a PNG and draw it on a page sized to
  the physical label (reportlab + Pillow)

A rate-limited pdf_merge render is retried once with png_embed under a
conservative batch configuration.
"""

from typing import Any, List, Optional, Sequence, Tuple
import asyncio
import io

import PIL.Image
from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from zpl_render.config.logging import get_logger
from zpl_render.config.settings import Settings
from zpl_render.core.errors import AssemblyError, RenderError, is_rate_limited
from zpl_render.core.rendering.orchestrator import BatchConfig, BatchOrchestrator
from zpl_render.core.upstream.dispatcher import UpstreamDispatcher
from zpl_render.core.zpl.segmenter import LabelUnit, segment
from zpl_render.models.schemas import AssemblyStrategy, OutputFormat, RenderRequest

logger = get_logger(__name__)


def _read_label_document(data: bytes, index: int) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(data))
        page_count = len(reader.pages)
    except Exception as e:
        raise AssemblyError(
            f"label document {index} is not a readable PDF: {e}", stage="pdf_merge"
        ) from e
    if page_count == 0:
        raise AssemblyError(f"label document {index} has no pages", stage="pdf_merge")
    return reader


def _stage_batch(staging: PdfWriter, documents: Sequence[Tuple[int, bytes]]) -> List[range]:
    """Copy one loading batch into ``staging``; the batch's readers die on return."""
    readers = [_read_label_document(data, index) for index, data in documents]
    ranges: List[range] = []
    for reader in readers:
        first = len(staging.pages)
        for page in reader.pages:
            staging.add_page(page)
        ranges.append(range(first, len(staging.pages)))
        # The writer pins every source reader until its translation table is reset.
        staging.reset_translation(reader)
    return ranges


def merge_pdf_documents(
    documents: Sequence[bytes], ordinals: Sequence[int], batch_size: int = 15
) -> bytes:
    """
    Copy the pages of per-label PDFs into one document in original label order.

    Unique documents are parsed ``batch_size`` at a time and copied into a
    staging document, so at most one batch of readers is alive at once. The
    final document is then laid out from the staged pages.

    Args:
        documents: One rendered PDF per unique label
        ordinals: Unique-document index for each original label position
        batch_size: Documents parsed per loading batch

    Returns:
        Merged PDF bytes
    """
    batch_size = max(1, batch_size)
    staging = PdfWriter()
    page_ranges: List[range] = []
    try:
        for start in range(0, len(documents), batch_size):
            stop = min(start + batch_size, len(documents))
            batch = [(index, documents[index]) for index in range(start, stop)]
            page_ranges.extend(_stage_batch(staging, batch))
            logger.debug("Staged label documents", loaded=stop, total=len(documents))

        writer = PdfWriter()
        for ordinal in ordinals:
            for page_number in page_ranges[ordinal]:
                writer.add_page(staging.pages[page_number])
        output = io.BytesIO()
        writer.write(output)
    except AssemblyError:
        raise
    except Exception as e:
        raise AssemblyError(f"page copy failed: {e}", stage="pdf_merge") from e
    return output.getvalue()


def fit_image(
    image_size: Tuple[float, float], page_size: Tuple[float, float]
) -> Tuple[float, float, float, float]:
    """Uniform scale-to-fit, centered. Returns (x, y, width, height) in points."""
    image_width, image_height = image_size
    page_width, page_height = page_size
    scale = min(page_width / image_width, page_height / image_height)
    width = image_width * scale
    height = image_height * scale
    return (page_width - width) / 2.0, (page_height - height) / 2.0, width, height


def embed_png_pages(
    images: Sequence[bytes], ordinals: Sequence[int], page_size: Tuple[float, float]
) -> bytes:
    """
    Draw one page per original label, each holding that label's image.

    Args:
        images: One rendered PNG per unique label
        ordinals: Unique-image index for each original label position
        page_size: Page width and height in points

    Returns:
        PDF bytes
    """
    readers: List[ImageReader] = []
    for index, data in enumerate(images):
        try:
            image = PIL.Image.open(io.BytesIO(data))
            image.load()
        except Exception as e:
            raise AssemblyError(
                f"label image {index} is not a readable image: {e}", stage="png_embed"
            ) from e
        readers.append(ImageReader(image))

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=page_size)
    try:
        for ordinal in ordinals:
            reader = readers[ordinal]
            x, y, width, height = fit_image(reader.getSize(), page_size)
            pdf.drawImage(
                reader,
                x,
                y,
                width=width,
                height=height,
                mask=None,
                preserveAspectRatio=False,
                anchor="sw",
            )
            pdf.showPage()
        pdf.save()
    except Exception as e:
        raise AssemblyError(f"image embedding failed: {e}", stage="png_embed") from e
    return buffer.getvalue()


class DocumentAssembler:
    """Builds the final PDF for a ZPL document."""

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        dispatcher: UpstreamDispatcher,
        strategy: AssemblyStrategy = AssemblyStrategy.AUTO,
        png_threshold: int = 35,
        merge_batch_size: int = 15,
        fallback_batch_delay_ms: int = 1000,
    ):
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.strategy = AssemblyStrategy(strategy)
        self.png_threshold = max(1, png_threshold)
        self.merge_batch_size = max(1, merge_batch_size)
        self.fallback_batch_delay_ms = max(0, fallback_batch_delay_ms)
        self.logger: Any = logger.bind(component="document_assembler")

    @classmethod
    def from_settings(
        cls, settings: Settings, orchestrator: BatchOrchestrator, dispatcher: UpstreamDispatcher
    ) -> "DocumentAssembler":
        return cls(
            orchestrator=orchestrator,
            dispatcher=dispatcher,
            strategy=AssemblyStrategy(settings.assembly_strategy),
            png_threshold=settings.png_strategy_threshold,
            merge_batch_size=settings.merge_batch_size,
            fallback_batch_delay_ms=settings.fallback_batch_delay_ms,
        )

    def choose_strategy(self, label_count: int) -> AssemblyStrategy:
        if self.strategy is not AssemblyStrategy.AUTO:
            return self.strategy
        if label_count <= self.png_threshold:
            return AssemblyStrategy.PDF_MERGE
        return AssemblyStrategy.PNG_EMBED

    async def assemble(self, request: RenderRequest) -> bytes:
        """
        Render every label of ``request.zpl`` into one ordered PDF.

        Raises:
            FatalUpstreamError: On non-retryable upstream statuses
            ExhaustedRetries: When upstream retries ran out (and the fallback did too)
            AssemblyError: When artifacts could not be merged
        """
        units, label_count = segment(request.zpl)

        if len(units) <= 1:
            self.logger.info("Single label document, direct render", label_count=label_count)
            try:
                return await self.dispatcher.dispatch(request, OutputFormat.DOCUMENT)
            except RenderError as e:
                e.for_labels(label_count)
                raise

        strategy = self.choose_strategy(len(units))
        self.logger.info("Assembling document", labels=len(units), strategy=strategy.value)

        try:
            return await self._assemble_units(request, units, strategy)
        except RenderError as e:
            e.for_labels(len(units))
            raise

    async def _assemble_units(
        self, request: RenderRequest, units: List[LabelUnit], strategy: AssemblyStrategy
    ) -> bytes:
        if strategy is AssemblyStrategy.PNG_EMBED:
            return await self._png_embed(request, units)

        try:
            return await self._pdf_merge(request, units)
        except RenderError as e:
            if not is_rate_limited(e):
                raise
            self.logger.warning(
                "PDF merge rate limited, falling back to PNG embedding",
                labels=len(units),
                error=str(e),
            )
            config = self.orchestrator.config.conservative(self.fallback_batch_delay_ms)
            return await self._png_embed(request, units, config)

    async def _pdf_merge(self, request: RenderRequest, units: List[LabelUnit]) -> bytes:
        result = await self.orchestrator.render_units(request, units, OutputFormat.DOCUMENT)
        try:
            merged = await asyncio.to_thread(
                merge_pdf_documents, result.artifacts, result.dedup.ordinals, self.merge_batch_size
            )
        except AssemblyError as e:
            raise AssemblyError(e.detail, stage=e.stage, label_count=len(units)) from e
        self.logger.info(
            "PDF merge completed", labels=len(units), unique_labels=result.dedup.unique_count
        )
        return merged

    async def _png_embed(
        self,
        request: RenderRequest,
        units: List[LabelUnit],
        config: Optional[BatchConfig] = None,
    ) -> bytes:
        result = await self.orchestrator.render_units(request, units, OutputFormat.IMAGE, config)
        try:
            document = await asyncio.to_thread(
                embed_png_pages,
                result.artifacts,
                result.dedup.ordinals,
                request.page_size_points,
            )
        except AssemblyError as e:
            raise AssemblyError(e.detail, stage=e.stage, label_count=len(units)) from e
        self.logger.info(
            "PNG embedding completed", labels=len(units), unique_labels=result.dedup.unique_count
        )
        return document
