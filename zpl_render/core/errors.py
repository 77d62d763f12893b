"""
Render Errors
=============

Error taxonomy shared by segmentation, dispatch, orchestration and assembly.
"""

from typing import Optional

BODY_EXCERPT_LIMIT = 500


class RenderError(Exception):
    """Base class for every failure raised by the render engine."""

    error_code = "RENDER_ERROR"

    def __init__(self, message: str, *, label_count: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.label_count = label_count

    def for_labels(self, label_count: int) -> "RenderError":
        """Attach the document label count, once, to the message and the error."""
        if self.label_count is None:
            self.label_count = label_count
            self.message = f"Unable to render {label_count} labels: {self.message}"
            self.args = (self.message,)
        return self


class ValidationError(RenderError):
    """Malformed render request. Never retried."""

    error_code = "VALIDATION_ERROR"


class UpstreamError(RenderError):
    """Failure talking to the upstream rendering service."""

    error_code = "UPSTREAM_ERROR"

    def __init__(self, message: str, *, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body[:BODY_EXCERPT_LIMIT]


class RetryableUpstreamError(UpstreamError):
    """HTTP 429/5xx, timeout or transient network failure."""

    error_code = "UPSTREAM_RETRYABLE"

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


class UpstreamTimeout(RetryableUpstreamError):
    """The per-call timeout elapsed before the upstream answered."""

    error_code = "UPSTREAM_TIMEOUT"


class TransientNetworkError(RetryableUpstreamError):
    """Connection reset, DNS failure or other network-level failure."""

    error_code = "UPSTREAM_NETWORK_ERROR"


class FatalUpstreamError(UpstreamError):
    """Non-retryable HTTP status from the upstream service."""

    error_code = "UPSTREAM_FATAL"


class ExhaustedRetries(UpstreamError):
    """Every attempt of a dispatch failed with a retryable error."""

    error_code = "UPSTREAM_EXHAUSTED"

    def __init__(
        self,
        attempts: int,
        *,
        last_status: Optional[int] = None,
        rate_limited: bool = False,
        body: str = "",
    ):
        reason = "rate limiting" if rate_limited else "upstream failures"
        super().__init__(
            f"Exhausted {attempts} attempts due to {reason}. Please try again later.",
            status=last_status,
            body=body,
        )
        self.attempts = attempts
        self.last_status = last_status
        self.rate_limited = rate_limited


class AssemblyError(RenderError):
    """Failure while merging or embedding per-label artifacts."""

    error_code = "ASSEMBLY_ERROR"

    def __init__(self, message: str, *, stage: str, label_count: Optional[int] = None):
        prefix = f"Unable to assemble {label_count} labels" if label_count else "Unable to assemble labels"
        super().__init__(f"{prefix} ({stage}): {message}", label_count=label_count)
        self.stage = stage
        self.detail = message


def is_rate_limited(error: BaseException) -> bool:
    """True when the error (or its cause) stems from upstream rate limiting."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if getattr(current, "rate_limited", False) is True:
            return True
        current = current.__cause__
    return False
