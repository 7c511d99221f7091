from __future__ import annotations

from typing import Any


class PAAError(Exception):
    """Base class for failures raised by the extraction and tracking engine."""


class InvalidParams(PAAError, ValueError):
    pass


class SessionAcquisitionError(PAAError):
    """The rendering session (browser, context or page) could not be opened."""


class TrackedTargetCheckError(PAAError):
    def __init__(self, target_id: str, keyword: str, cause: BaseException) -> None:
        super().__init__(f"check failed for target {target_id} ({keyword!r}): {cause}")
        self.target_id = target_id
        self.keyword = keyword
        self.cause = cause


class TrackedTargetNotFound(PAAError, LookupError):
    pass


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Structured error description handed back at the caller boundary."""
    return {
        "success": False,
        "error": str(exc) or exc.__class__.__name__,
        "type": exc.__class__.__name__,
    }
