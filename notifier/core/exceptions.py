"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the
messaging pipeline. Exceptions that reach the API are rendered through
AppException.to_dict(); the queue itself never lets a per-message exception
escape a batch.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    CONFIGURATION_ERROR = "ERR_1007"

    # Template errors (2xxx)
    TEMPLATE_NOT_FOUND = "ERR_2001"
    TEMPLATE_RENDER_FAILED = "ERR_2002"
    RECIPIENT_TYPE_NOT_ALLOWED = "ERR_2003"

    # Queue errors (3xxx)
    MESSAGE_NOT_FOUND = "ERR_3001"
    MESSAGE_INVALID_STATUS = "ERR_3002"

    # External service errors (5xxx)
    EMAIL_PROVIDER_ERROR = "ERR_5001"
    SMS_PROVIDER_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"


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


class ConfigurationError(AppException):
    """Raised when a required setting (API key, sender number) is missing"""

    def __init__(self, setting_name: str, message: str | None = None):
        super().__init__(
            message=message or f"{setting_name} environment variable not set",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            status_code=500,
            details={"setting": setting_name}
        )


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


class TemplateNotFoundError(NotFoundException):
    """Raised when no active template exists for a key"""

    def __init__(self, template_key: str):
        super().__init__(
            resource="Template",
            identifier=template_key,
            error_code=ErrorCode.TEMPLATE_NOT_FOUND,
        )
        self.template_key = template_key


class RecipientTypeNotAllowedError(AppException):
    """Raised when a template is not enabled for the recipient's user type"""

    def __init__(self, template_key: str, recipient_type: str):
        super().__init__(
            message=f"Template {template_key} not available for {recipient_type}",
            error_code=ErrorCode.RECIPIENT_TYPE_NOT_ALLOWED,
            status_code=400,
            details={"template_key": template_key, "recipient_type": recipient_type}
        )


class TemplateRenderError(AppException):
    """Raised when a template cannot be compiled or rendered"""

    def __init__(self, template: str, error: Exception, max_template_chars: int = 500):
        super().__init__(
            message=f"Template rendering failed: {error}",
            error_code=ErrorCode.TEMPLATE_RENDER_FAILED,
            status_code=422,
            details={
                "template": template[:max_template_chars],
                "error_type": type(error).__name__,
            }
        )
        self.template = template
        self.original_error = error


class MessageNotFoundError(NotFoundException):
    """Raised when a queued message id does not exist"""

    def __init__(self, message_id: str):
        super().__init__(
            resource="Message",
            identifier=message_id,
            error_code=ErrorCode.MESSAGE_NOT_FOUND,
        )


class MessageStatusError(AppException):
    """Raised when a queued message has the wrong status for an operation"""

    def __init__(self, message_id: str, current_status: str, required_status: str):
        super().__init__(
            message=(
                f"Message {message_id} has status '{current_status}', "
                f"required '{required_status}'"
            ),
            error_code=ErrorCode.MESSAGE_INVALID_STATUS,
            status_code=400,
            details={
                "message_id": message_id,
                "current_status": current_status,
                "required_status": required_status,
            }
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
        self.service_name = service_name


# Status codes worth retrying: rate limiting and server-side failures
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class ProviderError(ExternalServiceException):
    """
    Raised inside a provider adapter when a delivery attempt fails.

    Adapters catch it and convert it into a ProviderResponse, so it never
    crosses the adapter boundary. ``retryable`` tells the queue whether the
    attempt should consume retry budget or dead-letter immediately.
    """

    provider_name = "unknown"
    default_error_code = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            service_name=self.provider_name,
            message=message,
            error_code=self.default_error_code,
            details=details
        )
        self.provider = self.provider_name
        self.retryable = retryable

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "ProviderError":
        """
        Build a provider error from an HTTP response.

        Args:
            operation: API operation name (e.g. emails.send, messages.create)
            response: response object (e.g. httpx.Response)
            message: custom message (built from the status code if omitted)
            max_response_chars: truncation limit for the stored response body
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            retryable=status_code in TRANSIENT_STATUS_CODES,
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class EmailProviderError(ProviderError):
    """Raised when the email API rejects or fails a send"""

    provider_name = "resend"
    default_error_code = ErrorCode.EMAIL_PROVIDER_ERROR


class SMSProviderError(ProviderError):
    """Raised when the SMS API rejects or fails a send"""

    provider_name = "twilio"
    default_error_code = ErrorCode.SMS_PROVIDER_ERROR


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )
