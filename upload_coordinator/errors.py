"""Error taxonomy for the upload coordinator.

Every error raised by the core carries a stable ``code`` that the HTTP
layer uses as the ``error`` field of its JSON body:

- ValidationError: malformed or missing input
- NotFoundError: unknown or expired session
- StrategyMismatch: presign requested on a non-presigned session
- PartsInvalid: commit found missing or mismatched parts
- InvalidState: operation not allowed in the session's current state
- UpstreamError: object store or session store call failed
"""

from typing import Optional


class UploadCoordinatorError(Exception):
    """Base class for all coordinator errors."""

    code = "server_error"

    def to_dict(self) -> dict:
        """Render the error as a JSON-safe dictionary."""
        return {"error": self.code, "detail": str(self)}


class ValidationError(UploadCoordinatorError):
    """Raised when a request is malformed or missing required input."""

    code = "invalid_request"


class NotFoundError(UploadCoordinatorError):
    """Raised when a session does not exist or has expired."""

    code = "not_found"


class StrategyMismatch(UploadCoordinatorError):
    """Raised when presign is requested for a proxy-mode session."""

    code = "not_presigned_strategy"


class InvalidState(UploadCoordinatorError):
    """Raised when a session's status forbids the requested operation."""

    code = "invalid_state"

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status"] = self.status
        return data


class PartsInvalid(UploadCoordinatorError):
    """Raised when commit finds missing or mismatched parts.

    Attributes:
        missing: Part indices with no client entry or no recorded upload.
        mismatched: Part indices whose checksums disagree.
    """

    code = "parts_invalid"

    def __init__(self, missing: list[int], mismatched: list[int]):
        super().__init__(
            f"{len(missing)} missing and {len(mismatched)} mismatched parts"
        )
        self.missing = missing
        self.mismatched = mismatched

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["missing"] = self.missing
        data["mismatched"] = self.mismatched
        return data


class UpstreamError(UploadCoordinatorError):
    """Raised when an object store or session store call fails.

    The original exception is chained as ``__cause__``.
    """

    code = "upstream_error"
