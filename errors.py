"""
Error taxonomy. Handlers raise these; main.py renders them as
{"message": ...} with the matching status code.
"""
from typing import Optional


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message}


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized access"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden access"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"message": self.message, "reason": self.reason}


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class InvalidId(ApiError):
    status_code = 400
    default_message = "Invalid id"


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Missing required fields"


class UpstreamError(ApiError):
    status_code = 500
    default_message = "Upstream service failure"
