"""
Exceptions raised by the dispense service.

Every error carries a wire ``code`` and the HTTP ``status_code`` the API
answers it with, so handlers can render them uniformly.
"""

from typing import Any, Dict, Optional


class DispenseError(Exception):
    """Base exception for all dispense service errors."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> Dict[str, Any]:
        """Render the error payload devices and the admin UI expect."""
        return {
            "success": False,
            "error": {
                "message": self.message,
                "code": self.code,
            },
        }


class MissingFieldError(DispenseError):
    """A required request field was absent or blank."""

    status_code = 400
    default_code = "MISSING_FIELDS"


class NotFoundError(DispenseError):
    """A referenced machine or machine-product mapping does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"


class StoreUnavailableError(DispenseError):
    """The backing store failed on a path whose failure cannot be hidden."""

    status_code = 500
    default_code = "INTERNAL_ERROR"


class UpdateFailedError(DispenseError):
    """A write was attempted and rejected by the backing store."""

    status_code = 500
    default_code = "UPDATE_FAILED"
