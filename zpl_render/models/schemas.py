"""
Pydantic Models and Schemas
===========================

Core data models for render requests, label diagnostics, health reports and
API responses. Render requests are validated and normalized once at the
boundary and are immutable afterwards.
"""

from typing import Optional, List, Dict, Any, Literal
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from zpl_render.core.errors import ValidationError

MM_PER_INCH = 25.4

# dpi -> dots per millimetre understood by the upstream service
DPMM_BY_DPI = {
    203: 8,
    300: 12,
    600: 24,
}
DEFAULT_DPMM = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class OutputFormat(str, Enum):
    """Upstream render formats."""
    IMAGE = "png"
    DOCUMENT = "pdf"

    @property
    def mime_type(self) -> str:
        return "image/png" if self is OutputFormat.IMAGE else "application/pdf"


class MeasurementUnit(str, Enum):
    """Units for label width and height."""
    INCH = "in"
    MILLIMETER = "mm"


class Orientation(str, Enum):
    """Label orientation."""
    PORTRAIT = "0"
    ROTATED = "90"

    @property
    def path_value(self) -> int:
        """Orientation segment of the upstream path."""
        return 1 if self is Orientation.ROTATED else 0


class AssemblyStrategy(str, Enum):
    """Document assembly strategies."""
    AUTO = "auto"
    PDF_MERGE = "pdf_merge"
    PNG_EMBED = "png_embed"


# Render Models
class RenderRequest(BaseModel):
    """A single render call: ZPL markup plus the physical label description."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    zpl: str = Field(..., min_length=1, description="ZPL document to render")
    dpi: int = Field(203, gt=0, description="Printer resolution in dots per inch")
    width: float = Field(4.0, gt=0, description="Label width in `unit`")
    height: float = Field(6.0, gt=0, description="Label height in `unit`")
    unit: MeasurementUnit = Field(MeasurementUnit.INCH, description="Unit of width/height")
    orientation: Orientation = Field(Orientation.PORTRAIT, description="Label orientation")

    @field_validator("zpl")
    @classmethod
    def validate_zpl(cls, v: str) -> str:
        """Validate ZPL content is not empty."""
        if not v.strip():
            raise ValueError("ZPL code cannot be empty")
        return v

    @field_validator("orientation", mode="before")
    @classmethod
    def coerce_orientation(cls, v: Any) -> Any:
        """Accept 0/90 as numbers as well as strings."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v

    @classmethod
    def build(cls, **data: Any) -> "RenderRequest":
        """Validate raw input, raising the engine's ValidationError on failure."""
        try:
            return cls(**data)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Invalid render request: {problems}") from e

    def with_zpl(self, zpl: str) -> "RenderRequest":
        """Same render parameters for a different piece of markup."""
        return self.model_copy(update={"zpl": zpl})

    @property
    def dpmm(self) -> int:
        """Dots per millimetre; unknown dpi values fall back to the lowest resolution."""
        return DPMM_BY_DPI.get(self.dpi, DEFAULT_DPMM)

    @property
    def width_in(self) -> float:
        return self.width / MM_PER_INCH if self.unit is MeasurementUnit.MILLIMETER else self.width

    @property
    def height_in(self) -> float:
        return self.height / MM_PER_INCH if self.unit is MeasurementUnit.MILLIMETER else self.height

    @property
    def page_size_points(self) -> tuple[float, float]:
        """Physical label size in PDF points (72 per inch)."""
        return self.width_in * 72.0, self.height_in * 72.0


class PreviewRequest(RenderRequest):
    """Render request addressing a single label for preview."""
    label_index: int = Field(0, ge=0, description="0-based label to preview")


class AnalyzeRequest(BaseModel):
    """Request model for label counting diagnostics."""
    zpl: str = Field(..., min_length=1, description="ZPL document to analyze")


class LabelAnalysis(BaseModel):
    """Marker counts and the label count chosen by the counting policy."""
    total_length: int = Field(..., description="Document length in characters")
    graphic_download_count: int = Field(..., description="Number of ~DGR: blocks")
    label_start_count: int = Field(..., description="Number of ^XA markers")
    standalone_label_start_count: int = Field(
        ..., description="^XA markers not followed by ^QA or ^MMT"
    )
    label_end_count: int = Field(..., description="Number of ^XZ markers")
    print_quantities: List[int] = Field(default_factory=list, description="^PQ arguments")
    label_count: int = Field(..., ge=1, description="Label count used for rendering")
    counted_by: Literal["graphic_download", "label_start", "print_quantity", "default"] = Field(
        ..., description="Counting rule that produced label_count"
    )
    unit_count: int = Field(..., ge=1, description="Renderable units after segmentation")


# Health Check Models
class EndpointHealth(BaseModel):
    """Reachability of one upstream endpoint."""
    base_url: str = Field(..., description="Upstream base URL")
    ok: bool = Field(..., description="Whether the probe render succeeded")
    status: int = Field(0, description="HTTP status, 0 when no response was received")
    error: Optional[str] = Field(None, description="Network error, if any")
    elapsed_ms: int = Field(0, ge=0, description="Probe duration in milliseconds")


class UpstreamHealthReport(BaseModel):
    """Result of probing every configured upstream endpoint."""
    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    endpoints: List[EndpointHealth] = Field(default_factory=list)


class HealthStatus(BaseModel):
    """Liveness status."""
    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    version: str = Field(..., description="Application version")
    cache: Dict[str, Any] = Field(default_factory=dict, description="Cache statistics")
    gate: Dict[str, Any] = Field(default_factory=dict, description="Concurrency gate statistics")


# Error Models
class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
    request_id: Optional[str] = Field(None, description="Request identifier for tracking")
