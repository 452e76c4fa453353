"""
Error taxonomy for the analysis pipeline.

Every AnalysisError carries the HTTP status it maps to and a short message
that is safe to show to the caller. Upstream detail (status codes, response
bodies) stays on the exception for logging only.
"""

from __future__ import annotations


class ConfigError(RuntimeError):
    """Required configuration is missing or unreadable. Fatal at startup."""


class AnalysisError(Exception):
    status_code: int = 500
    public_message: str = "Analysis failed."

    def __init__(self, public_message: str | None = None, *, detail: str | None = None) -> None:
        if public_message is not None:
            self.public_message = public_message
        self.detail = detail
        super().__init__(detail or self.public_message)


class InvalidInput(AnalysisError):
    """No images, too many images, or a payload that is not an image."""
    status_code = 400
    public_message = "No image data provided."


class QuotaExhausted(AnalysisError):
    status_code = 429
    public_message = "Hourly free analysis limit reached. Please try again later."


class NoSubjectDetected(AnalysisError):
    status_code = 400
    public_message = "No person detected in any of the images."


class UpstreamVisionError(AnalysisError):
    """Object/face detection call failed or returned unusable data."""
    status_code = 500
    public_message = "Failed to analyze image with the AI service."

    def __init__(self, detail: str, upstream_status: int | None = None) -> None:
        super().__init__(detail=detail)
        self.upstream_status = upstream_status


class UpstreamReasoningError(AnalysisError):
    """Reasoning call failed, or its reply was not a valid report."""
    status_code = 500
    public_message = "Failed to analyze image with the AI service."

    def __init__(self, detail: str, upstream_status: int | None = None) -> None:
        super().__init__(detail=detail)
        self.upstream_status = upstream_status


class InternalError(AnalysisError):
    status_code = 500
    public_message = "An unexpected error occurred during analysis."


class AnalysisTimeout(InternalError):
    public_message = "Analysis took too long. Please try again."
