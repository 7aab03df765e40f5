"""
Custom Exception Hierarchy

Structured exceptions shared by the API layer, the catalog gateway, the
messaging providers and the session store.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    ORDER_INVALID_STATUS = "ERR_2002"

    # Catalog errors (3xxx)
    CATALOG_UNAVAILABLE = "ERR_3001"

    # External service errors (5xxx)
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # Session errors (6xxx)
    SESSION_BUSY = "ERR_6001"
    SESSION_NOT_FOUND = "ERR_6002"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class OrderNotFoundError(NotFoundException):
    """Raised when an order does not exist"""

    def __init__(self, order_id: int):
        super().__init__("Order", order_id, error_code=ErrorCode.ORDER_NOT_FOUND)


class InvalidOrderStatusError(AppException):
    """Raised when an order status outside the known lifecycle is requested"""

    def __init__(self, status: str, allowed: list[str]):
        super().__init__(
            message=f"Invalid order status '{status}'",
            error_code=ErrorCode.ORDER_INVALID_STATUS,
            status_code=400,
            details={"status": status, "allowed": allowed}
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class CatalogUnavailableError(ExternalServiceException):
    """Raised when the catalog/order store cannot be reached or fails a query"""

    def __init__(self, operation: str, message: str = "catalog store unavailable"):
        super().__init__(
            service_name="catalog",
            message=f"Catalog error during {operation}: {message}",
            error_code=ErrorCode.CATALOG_UNAVAILABLE,
            details={"operation": operation}
        )


class WhatsAppError(ExternalServiceException):
    """Raised when the WhatsApp provider rejects or fails a request"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="whatsapp",
            message=f"WhatsApp API error: {message}",
            error_code=ErrorCode.WHATSAPP_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "WhatsAppError":
        """
        Build a WhatsAppError from an HTTP response.

        Args:
            operation: Operation name (e.g. send)
            response: Response object (httpx.Response)
            message: Custom message; built from the status code when omitted
            max_response_chars: Cap on stored response text to keep logs small
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class SessionException(AppException):
    """Base exception for conversation session errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        session_id: str | None = None,
        status_code: int = 409
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details={"session_id": session_id} if session_id else None
        )


class SessionBusyError(SessionException):
    """Raised when the per-session lock cannot be acquired in time"""

    def __init__(self, session_id: str, timeout_seconds: float):
        super().__init__(
            message=f"Session {session_id} is busy (lock not acquired in {timeout_seconds}s)",
            error_code=ErrorCode.SESSION_BUSY,
            session_id=session_id
        )


class SessionNotFoundError(SessionException):
    """Raised by diagnostics when a session id is not live"""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session not found: {session_id}",
            error_code=ErrorCode.SESSION_NOT_FOUND,
            session_id=session_id,
            status_code=404
        )
