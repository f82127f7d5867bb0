"""
Error taxonomy for the chat gateway. Each error carries the HTTP status it
maps to and a generic message that is safe to return to clients.
"""


class GatewayError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)

    def details(self) -> dict:
        """Extra client-safe fields sent alongside `detail`."""
        return {}


class ValidationError(GatewayError):
    """Missing or malformed request field."""

    status_code = 400
    public_message = "Invalid request"

    def __init__(self, message: str | None = None):
        super().__init__(message)
        # Field errors carry no internal detail, so they are returned as-is.
        if message:
            self.public_message = message


class Unauthorized(GatewayError):
    status_code = 401
    public_message = "Unauthorized UserID"


class CapacityExceeded(GatewayError):
    status_code = 403
    public_message = "Maximum request limit reached"

    def __init__(self, request_count: int, max_cap: int):
        super().__init__(f"Request count {request_count} reached ceiling {max_cap}")
        self.request_count = request_count
        self.max_cap = max_cap

    def details(self) -> dict:
        return {"requestCount": self.request_count, "maxCap": self.max_cap}


class NotFound(GatewayError):
    status_code = 404
    public_message = "User not found"


class UpstreamFailure(GatewayError):
    """The language-model call failed, timed out, or returned no content."""

    status_code = 500
    public_message = "Failed to generate AI response"


class StorageFailure(GatewayError):
    status_code = 500
    public_message = "Internal server error"
