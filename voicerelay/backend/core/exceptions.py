"""
Custom Exceptions.

Application-specific exception classes for consistent error handling.
"""


class ApplicationError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, code: str = "SYS_INTERNAL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class ValidationError(ApplicationError):
    """Raised when validation fails."""

    def __init__(self, message: str = "Validation failed", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message, code="VAL_VALIDATION_ERROR")


class InvalidClientMessageError(ValidationError):
    """Raised when a client frame is not a JSON document."""

    def __init__(self, details: str) -> None:
        super().__init__(
            "Invalid JSON format sent to server.",
            details={"reason": details},
        )
        self.code = "RELAY_INVALID_JSON"
        self.reason = details


class ExternalServiceError(ApplicationError):
    """Raised when an external service call fails."""

    def __init__(self, message: str = "External service error") -> None:
        super().__init__(message, code="SYS_EXTERNAL_SERVICE_ERROR")


class UpstreamConnectionError(ExternalServiceError):
    """Raised when the realtime API socket cannot be opened or fails in transit."""

    def __init__(self, message: str = "Failed to connect to OpenAI Realtime API.", details: str = "") -> None:
        super().__init__(message)
        self.code = "UPSTREAM_CONNECTION_FAILED"
        self.details = details


class ServiceUnavailableError(ApplicationError):
    """Raised when the service is not ready to accept traffic."""

    def __init__(self, message: str = "Service unavailable", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message, code="SYS_UNAVAILABLE")
