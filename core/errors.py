# TileCacheExporter/core/errors.py
# -*- coding: utf-8 -*-

"""Error types for tile export orchestration (UI-agnostic)."""

from __future__ import annotations


class ExportError(Exception):
    """Base exception for export failures.

    Args:
        code: Stable error code for UI mapping / translation.
        details: Optional technical details for logs or advanced display.
    """

    def __init__(self, code: str, details: str = "") -> None:
        super().__init__(code)
        self.code = code
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.code}: {self.details}"
        return self.code


class ValidationError(ExportError):
    """Raised when input parameters are invalid."""
    pass


class CancelledError(ExportError):
    """Raised when the user cancels the export."""
    pass


class RegionUndefinedError(ExportError):
    """Raised when no download region exists yet (map not loaded)."""

    def __init__(self, details: str = "") -> None:
        super().__init__("ERR_REGION_UNDEFINED", details)


class ConcurrentJobError(ExportError):
    """Raised when an export is requested while another one is active."""

    def __init__(self, details: str = "") -> None:
        super().__init__("ERR_JOB_ACTIVE", details)


class ResolutionError(ExportError):
    """Raised when export parameters could not be computed."""
    pass


class JobFailedError(ExportError):
    """Terminal failure of an export job.

    Args:
        details: Diagnostic text reported by the exporter.
        reason_code: Code of the underlying exporter error, if any.
    """

    def __init__(self, details: str = "", reason_code: str = "") -> None:
        super().__init__("ERR_JOB_FAILED", details)
        self.reason_code = reason_code

    @classmethod
    def from_exception(cls, ex: BaseException) -> "JobFailedError":
        if isinstance(ex, JobFailedError):
            return ex
        if isinstance(ex, ExportError):
            return cls(ex.details or ex.code, reason_code=ex.code)
        return cls(str(ex) or type(ex).__name__, reason_code="ERR_UNEXPECTED")


class CleanupError(ExportError):
    """Raised when a working directory entry could not be deleted."""

    def __init__(self, details: str = "") -> None:
        super().__init__("ERR_CLEANUP_FAILED", details)


ERROR_LABELS = {
    "ERR_CANCELLED": "Export was cancelled",
    "ERR_REGION_UNDEFINED": "Map is not ready; no download area defined yet",
    "ERR_JOB_ACTIVE": "An export is already running",
    "ERR_RESOLUTION_FAILED": "Error generating parameters",
    "ERR_RESOLUTION_INTERRUPTED": "Tile cache parameters interrupted",
    "ERR_JOB_FAILED": "Job did not succeed",
    "ERR_CLEANUP_FAILED": "Failed to clear working directory",
}


def format_error(err: ExportError) -> str:
    """Combine a short label for ``err.code`` with its details."""
    code = getattr(err, "code", "ERR_UNKNOWN")
    details = getattr(err, "details", "")
    label = ERROR_LABELS.get(code)
    if label is None:
        label = "Validation failed" if code.startswith("ERR_VALIDATION") else "Export failed"
    if details:
        return f"{label}: {details}"
    return label
