from typing import Any, Optional


class ApiError(Exception):
    """Base for errors rendered by the unified handler in country_api.main."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, details: Optional[Any] = None):
        super().__init__(self.error if details is None else f"{self.error}: {details}")
        self.details = details

    def to_body(self) -> dict:
        body: dict = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class SourceUnavailable(ApiError):
    status_code = 503
    error = "External data source unavailable"

    def __init__(self, source: str, reason: Optional[str] = None):
        super().__init__(f"Could not fetch data from {source}")
        self.source = source
        self.reason = reason


class ValidationFailed(ApiError):
    status_code = 400
    error = "Validation failed"


class Conflict(ValidationFailed):
    def __init__(self, field: str = "name", message: str = "already exists"):
        super().__init__({field: message})


class NotFound(ApiError):
    status_code = 404
    error = "Country not found"


class InternalError(ApiError):
    # Details stay in the server log
    def to_body(self) -> dict:
        return {"error": self.error}
