"""
Shared error handling for the product gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str
    path: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_content(self) -> Dict[str, Any]:
        """Render as a JSON body, omitting unset optional fields."""
        return self.model_dump(exclude_none=True)


class GatewayError(Exception):
    """Base exception for gateway failures that map onto an HTTP response."""

    status_code: int = 500
    error: str = "Internal Server Error"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self, include_details: bool = False) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.error,
            message=self.message,
            details=self.details if include_details and self.details else None,
        )


class BackendUnavailableError(GatewayError):
    """Upstream refused the connection or could not be reached."""

    status_code = 503
    error = "Backend service unavailable"
    default_message = "The backend service is currently unavailable. Please try again later."


class BackendTimeoutError(GatewayError):
    """Upstream did not answer within the configured timeout."""

    status_code = 504
    error = "Backend service timeout"
    default_message = "The backend service did not respond in time. Please try again later."


class BadGatewayError(GatewayError):
    """Any other transport failure before an upstream response arrived."""

    status_code = 502
    error = "Bad Gateway"
    default_message = "An error occurred while processing your request."


class RateLimitError(GatewayError):
    """Rate limiting errors."""

    status_code = 429
    error = "Too many requests"
    default_message = "Please try again later"


class PayloadTooLargeError(GatewayError):
    """Inbound request body exceeds the configured bound."""

    status_code = 413
    error = "Payload Too Large"
    default_message = "The request body exceeds the maximum allowed size."


class RouteNotFoundError(GatewayError):
    """No gateway route matches the requested path."""

    status_code = 404
    error = "Not Found"
    default_message = "The requested endpoint does not exist"

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(message)

    def to_response(self, include_details: bool = False) -> ErrorResponse:
        response = super().to_response(include_details)
        response.path = self.path
        return response


class InternalServerError(GatewayError):
    """Unexpected fault caught by the terminal handler."""
