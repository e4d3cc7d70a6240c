"""
Custom Exception Hierarchy

Structured exceptions mapped to JSON error responses by the API layer.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    NOT_FOUND = "ERR_1002"
    RATE_LIMITED = "ERR_1006"

    # Webhook errors (2xxx)
    WEBHOOK_SIGNATURE_INVALID = "ERR_2001"
    WEBHOOK_PAYLOAD_MALFORMED = "ERR_2002"
    WEBHOOK_VERIFICATION_FAILED = "ERR_2003"

    # Event store errors (3xxx)
    EVENT_NOT_FOUND = "ERR_3001"
    EVENT_NOT_RETRYABLE = "ERR_3002"

    # External service errors (5xxx)
    PLATFORM_API_ERROR = "ERR_5001"
    NOTIFICATION_DELIVERY_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"


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


class WebhookSignatureError(AppException):
    """Raised when X-Hub-Signature-256 is missing, malformed or does not match"""

    def __init__(self, reason: str = "invalid signature"):
        super().__init__(
            message=f"Webhook signature rejected: {reason}",
            error_code=ErrorCode.WEBHOOK_SIGNATURE_INVALID,
            status_code=401,
        )


class MalformedPayloadError(AppException):
    """Raised when a signed webhook body, or one of its items, cannot be parsed"""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Malformed webhook payload: {reason}",
            error_code=ErrorCode.WEBHOOK_PAYLOAD_MALFORMED,
            status_code=400,
            details={"reason": reason},
        )


class WebhookVerificationError(AppException):
    """Raised when the subscription challenge carries a wrong verify token"""

    def __init__(self):
        super().__init__(
            message="Webhook verification failed",
            error_code=ErrorCode.WEBHOOK_VERIFICATION_FAILED,
            status_code=403,
        )


class EventNotFoundError(NotFoundException):
    """Raised when a webhook event id does not exist"""

    def __init__(self, event_id: int):
        super().__init__("WebhookEvent", event_id, error_code=ErrorCode.EVENT_NOT_FOUND)


class EventNotRetryableError(AppException):
    """Raised when an admin asks to retry a processed or abandoned event"""

    def __init__(self, event_id: int, status: str):
        super().__init__(
            message=f"Webhook event {event_id} cannot be retried (status: {status})",
            error_code=ErrorCode.EVENT_NOT_RETRYABLE,
            status_code=409,
            details={"event_id": event_id, "status": status},
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


class PlatformAPIError(ExternalServiceException):
    """Raised when the Instagram/Facebook Graph API answers with an error"""

    def __init__(
        self,
        message: str,
        platform: str = "instagram",
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            service_name=f"{platform}_graph_api",
            message=f"{platform.capitalize()} API error: {message}",
            error_code=ErrorCode.PLATFORM_API_ERROR,
            details=details
        )
        self.platform_message = message

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        platform: str = "instagram",
        max_response_chars: int = 500
    ) -> "PlatformAPIError":
        """
        Build a PlatformAPIError from an HTTP response.

        Graph API errors come as ``{"error": {"message": ..., "code": ...}}``;
        when the body is not JSON the raw text is kept (truncated).
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        api_message = None
        api_code = None
        try:
            error = (response.json() or {}).get("error") or {}
            api_message = error.get("message")
            api_code = error.get("code")
        except (ValueError, AttributeError):
            pass
        return cls(
            message=api_message or f"{operation} returned status {status_code}",
            platform=platform,
            details={
                "operation": operation,
                "status_code": status_code,
                "api_error_code": api_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class NotificationDeliveryError(ExternalServiceException):
    """Raised when a vendor notification webhook rejects a delivery"""

    def __init__(self, url: str, status_code: int | None):
        super().__init__(
            service_name="vendor_notification_webhook",
            message=f"Notification webhook returned status {status_code}",
            error_code=ErrorCode.NOTIFICATION_DELIVERY_ERROR,
            details={"url": url, "status_code": status_code},
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
