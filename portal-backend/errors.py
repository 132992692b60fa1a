from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base error; carries the HTTP status and any extra envelope fields."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "error": self.error_code,
            **self.extra,
        }


class ValidationError(PortalError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class NotFound(PortalError):
    status_code = 404
    error_code = "NOT_FOUND"


class Conflict(PortalError):
    status_code = 400
    error_code = "CONFLICT"


class Unauthenticated(PortalError):
    status_code = 401
    error_code = "UNAUTHENTICATED"


class Unauthorized(PortalError):
    status_code = 403
    error_code = "UNAUTHORIZED"


class StoreFailure(PortalError):
    status_code = 500
    error_code = "STORE_FAILURE"


class DependencyFailure(PortalError):
    """A best-effort propagation write failed. Never returned to the caller."""

    error_code = "DEPENDENCY_FAILURE"

    def __init__(self, task: Dict[str, Any], cause: Exception):
        super().__init__(f"{task.get('kind')} failed: {cause}")
        self.task = task
        self.cause = cause
