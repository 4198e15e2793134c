from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ValidationError(ApiError):
    """Rejected human input (bad HH:MM, empty reason). Raised before any state change."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(422, code, message)


class NotFoundError(ApiError):
    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(404, code, message)


class InconsistentDataError(ApiError):
    """Advisory: source data for a month is incomplete.

    The aggregator degrades instead of raising this; it is used to carry the
    details into the log record.
    """

    def __init__(self, message: str, *, missing_dates: list[str] | None = None):
        super().__init__(409, "INCONSISTENT_DATA", message)
        self.missing_dates = list(missing_dates or [])


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
