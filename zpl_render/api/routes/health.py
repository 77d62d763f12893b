"""
Health Routes
=============

FastAPI routes for upstream health checks.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from zpl_render.api.routes.render import get_engine
from zpl_render.core.rendering.engine import RenderEngine
from zpl_render.models.schemas import UpstreamHealthReport

router = APIRouter(prefix="/api/v1", tags=["Health"])


@router.get("/health/upstream", response_model=UpstreamHealthReport)
async def upstream_health(engine: RenderEngine = Depends(get_engine)) -> JSONResponse:
    """
    Probe every configured upstream endpoint with a minimal render.

    Returns 200 when at least one endpoint answers, 503 when none does.
    """
    report = await engine.check_upstream()
    status_code = 503 if report.status == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=report.model_dump(mode="json"))
