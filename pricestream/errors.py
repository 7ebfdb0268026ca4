"""
Centralized exceptions for the price stream.
Error taxonomy and structured error handling.
"""

from typing import Dict, Any, Optional
from fastapi import HTTPException, status


class PriceStreamError(Exception):
    """Base exception for the price stream."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class TransportError(PriceStreamError):
    """Transport could not be opened, dropped, or delivered garbage. Retried via backoff."""

    def __init__(self, message: str = "WebSocket connection error", details: Optional[Dict[str, Any]] = None,
                 error_code: str = "TRANSPORT_ERROR"):
        super().__init__(message, error_code, details)


class MessageParseError(TransportError):
    """Inbound frame was not a valid message envelope."""

    def __init__(self, message: str = "Failed to parse message", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, error_code="PARSE_ERROR")


class RetriesExhaustedError(PriceStreamError):
    """Reconnect budget used up; an explicit connect() is needed to resume."""

    def __init__(self, attempts: int, details: Optional[Dict[str, Any]] = None):
        self.attempts = attempts
        merged = {"attempts": attempts}
        merged.update(details or {})
        super().__init__("Max reconnection attempts reached", "RETRIES_EXHAUSTED", merged)


class FetchError(PriceStreamError):
    """Historical series or quote fetch failed."""

    def __init__(self, message: str = "Fetch failed", details: Optional[Dict[str, Any]] = None,
                 error_code: str = "FETCH_ERROR"):
        super().__init__(message, error_code, details)


class APIError(FetchError):
    """Non-2xx response from the price API."""

    def __init__(self, message: str, status_code: int, data: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.data = data or {}
        super().__init__(message, {"status": status_code, "data": self.data}, error_code="API_ERROR")


class InvalidInputError(PriceStreamError):
    """Consumer supplied input that cannot be acted on."""

    def __init__(self, message: str = "Invalid input", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_INPUT", details)


class ConfigurationError(PriceStreamError):
    """Configuration error."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


# Error mapping to HTTP responses
ERROR_TO_HTTP_STATUS = {
    TransportError: status.HTTP_503_SERVICE_UNAVAILABLE,
    MessageParseError: status.HTTP_502_BAD_GATEWAY,
    RetriesExhaustedError: status.HTTP_503_SERVICE_UNAVAILABLE,
    FetchError: status.HTTP_502_BAD_GATEWAY,
    APIError: status.HTTP_502_BAD_GATEWAY,
    InvalidInputError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def create_http_exception(error: PriceStreamError) -> HTTPException:
    """Convert PriceStreamError to HTTPException with proper status code."""
    status_code = ERROR_TO_HTTP_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.error_code,
            "message": error.message,
            "details": error.details
        }
    )


def sanitize_error_message(message: str) -> str:
    """Mask credential-looking words before a message leaves the process."""
    sensitive_patterns = [
        "password", "secret", "token", "private", "api_key", "access_token"
    ]

    sanitized = message
    for pattern in sensitive_patterns:
        if pattern.lower() in sanitized.lower():
            sanitized = sanitized.replace(pattern, "***")

    return sanitized


def create_structured_error_response(error: Exception) -> Dict[str, Any]:
    """Create structured error response for logging and API responses."""
    if isinstance(error, PriceStreamError):
        return {
            "error_type": error.error_code,
            "message": sanitize_error_message(error.message),
            "details": error.details,
        }
    return {
        "error_type": "UNKNOWN_ERROR",
        "message": sanitize_error_message(str(error)),
        "details": {},
    }
