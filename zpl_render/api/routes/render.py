"""
Render Routes
=============

FastAPI routes for label preview, document rendering and label diagnostics.
"""

from fastapi import APIRouter, Depends, Request, Response

from zpl_render.config.logging import get_logger
from zpl_render.core.rendering.engine import RenderEngine
from zpl_render.core.zpl.segmenter import count_labels
from zpl_render.models.schemas import (
    AnalyzeRequest,
    LabelAnalysis,
    OutputFormat,
    PreviewRequest,
    RenderRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Rendering"])


def get_engine(request: Request) -> RenderEngine:
    """Dependency returning the engine created by the application lifespan."""
    return request.app.state.engine


@router.post(
    "/render/preview",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def render_preview(
    payload: PreviewRequest, engine: RenderEngine = Depends(get_engine)
) -> Response:
    """Render one label of the document as a PNG."""
    logger.info(
        "Preview requested", content_length=len(payload.zpl), label_index=payload.label_index
    )
    image = await engine.render_preview(payload, payload.label_index)
    return Response(
        content=image,
        media_type=OutputFormat.IMAGE.mime_type,
        headers={"X-Label-Index": str(payload.label_index)},
    )


@router.post(
    "/render/document",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}},
)
async def render_document(
    payload: RenderRequest, engine: RenderEngine = Depends(get_engine)
) -> Response:
    """Render every label into one PDF, one page per label in document order."""
    label_count = count_labels(payload.zpl)
    logger.info("Document render requested", content_length=len(payload.zpl), labels=label_count)
    document = await engine.render_document(payload)
    return Response(
        content=document,
        media_type=OutputFormat.DOCUMENT.mime_type,
        headers={
            "Content-Disposition": 'inline; filename="labels.pdf"',
            "X-Label-Count": str(label_count),
        },
    )


@router.post("/labels/analyze", response_model=LabelAnalysis, tags=["Labels"])
async def analyze_labels(
    payload: AnalyzeRequest, engine: RenderEngine = Depends(get_engine)
) -> LabelAnalysis:
    """Marker counts and the label count the renderer will use."""
    return engine.analyze(payload.zpl)
