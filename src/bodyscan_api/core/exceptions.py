"""Custom exception classes for the API and the scan pipeline."""

from typing import Any


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int = 400, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} with id '{resource_id}' not found",
            status_code=404,
            details={"resource": resource, "id": resource_id},
        )


class PipelineError(APIError):
    """
    Base class for errors raised while processing a scan.

    `retryable` tells the orchestrator whether the failure may consume
    retry budget. Only transient infrastructure errors are retryable.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        stage: str | None = None,
        details: Any = None,
    ):
        self.stage = stage
        super().__init__(message=message, status_code=status_code, details=details)


class InvalidInputError(PipelineError):
    """Malformed processing request (missing scan or photos)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message=message, status_code=422, details=details)


class BusinessRejection(PipelineError):
    """Scan rejected by quality control. Terminal, never retried."""

    def __init__(self, reasons: list[str], stage: str | None = "qc"):
        self.reasons = reasons
        super().__init__(
            message=f"retake photos: {', '.join(reasons) or 'quality check failed'}",
            status_code=422,
            stage=stage,
            details={"reasons": reasons},
        )


class TransientInfraError(PipelineError):
    """Timeout or unavailable dependency. Retried per the retry policy."""

    retryable = True

    def __init__(self, message: str, stage: str | None = None, details: Any = None):
        super().__init__(message=message, status_code=503, stage=stage, details=details)


class ValidationError(PipelineError):
    """A dependency returned a structurally invalid result. Never retried."""

    def __init__(self, message: str, stage: str | None = None, details: Any = None):
        super().__init__(message=message, status_code=422, stage=stage, details=details)


class StageCancelledError(PipelineError):
    """Pipeline run cancelled by an operator."""

    def __init__(self, stage: str | None = None):
        super().__init__(
            message="cancelled by operator",
            status_code=409,
            stage=stage,
        )
