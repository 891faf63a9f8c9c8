"""
Service layer exceptions.

Every failure of an outbound call surfaces as a ServiceError subclass.
Upstream failures that were actually attempted are ApiError instances
tagged with an ApiErrorType; the retry policy and the error reporter
classify on that type.
"""

from dataclasses import dataclass
from enum import Enum


class ApiErrorType(str, Enum):
    """Classification of upstream API failures."""

    TIMEOUT = "TIMEOUT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMIT = "RATE_LIMIT"
    UNAUTHORIZED = "UNAUTHORIZED"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN"


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class ApiError(ServiceError):
    """A classified failure from an upstream provider."""

    error_type: ApiErrorType = ApiErrorType.UNKNOWN

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, service_id=service_id)


class RequestTimeoutError(ApiError):
    """Request timed out or was aborted."""

    error_type = ApiErrorType.TIMEOUT

    def __init__(
        self,
        service_id: str,
        timeout: float,
        status_code: int | None = None,
        message: str | None = None,
    ):
        self.timeout = timeout
        super().__init__(
            message
            or f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
            status_code=status_code,
        )


class NetworkError(ApiError):
    """Connection-level failure before a response was received."""

    error_type = ApiErrorType.NETWORK_ERROR


class ServerError(ApiError):
    """Provider answered with a 5xx status."""

    error_type = ApiErrorType.SERVER_ERROR


class UnauthorizedError(ApiError):
    """Provider rejected the credential (401/403)."""

    error_type = ApiErrorType.UNAUTHORIZED


class QuotaExceededError(ApiError):
    """Provider quota for the credential is used up."""

    error_type = ApiErrorType.QUOTA_EXCEEDED


class RateLimitError(ApiError):
    """Rate limit exceeded."""

    error_type = ApiErrorType.RATE_LIMIT

    def __init__(
        self,
        service_id: str,
        retry_after: float | None = None,
        status_code: int | None = 429,
    ):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id, status_code=status_code)


class UnknownApiError(ApiError):
    """Upstream failure that does not fit another category."""

    error_type = ApiErrorType.UNKNOWN


class MalformedResponseError(UnknownApiError):
    """Response body could not be decoded."""

    pass


class LocationNotFoundError(ServiceError):
    """Geocoding returned no result for the requested location."""

    def __init__(self, service_id: str, location: str):
        self.location = location
        super().__init__(
            f"Could not geocode location '{location}'", service_id=service_id
        )


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RetryAbortedError(ServiceError):
    """Cancellation signal fired while waiting between retries."""

    def __init__(self, service_id: str, attempt: int):
        self.attempt = attempt
        super().__init__(
            f"Retry of service '{service_id}' aborted after attempt {attempt + 1}",
            service_id=service_id,
        )


class NotConfiguredError(ServiceError):
    """No credential is configured for the provider."""

    def __init__(self, service_id: str, setting: str):
        self.setting = setting
        super().__init__(
            f"{provider_name(service_id)} API key not configured. "
            f"Please configure {setting}.",
            service_id=service_id,
        )


PROVIDER_NAMES = {
    "openweathermap": "OpenWeatherMap",
    "googleplaces": "Google Places",
    "booking": "Booking",
}


def provider_name(service_id: str | None) -> str:
    """Human-readable provider name for a service id."""
    if not service_id:
        return "External"
    return PROVIDER_NAMES.get(service_id, service_id)


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    SERVER = "server"
    CONFIGURATION = "configuration"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class ErrorReport:
    """User-facing description of a service failure."""

    category: ErrorCategory
    service_id: str | None
    message: str
    user_message: str

    def to_dict(self) -> dict[str, str | None]:
        return {
            "category": self.category.value,
            "service_id": self.service_id,
            "message": self.message,
            "user_message": self.user_message,
        }


def describe_error(error: BaseException) -> ErrorReport:
    """Map an exception to a provider-attributed, human-readable report."""
    service_id = getattr(error, "service_id", None)
    name = provider_name(service_id)

    if isinstance(error, CircuitOpenError):
        category = ErrorCategory.UNAVAILABLE
        user_message = (
            f"The {name} service is failing repeatedly and has been paused. "
            f"Please try again in {error.reset_after_seconds:.0f} seconds."
        )
    elif isinstance(error, NotConfiguredError):
        category = ErrorCategory.CONFIGURATION
        user_message = (
            f"{name} is not configured. Please add an API key in settings."
        )
    elif isinstance(error, UnauthorizedError):
        category = ErrorCategory.AUTH
        user_message = (
            f"Invalid {name} API key. Please check your API key configuration."
        )
    elif isinstance(error, QuotaExceededError):
        category = ErrorCategory.QUOTA
        user_message = (
            f"{name} API quota exceeded. Please upgrade your plan "
            f"or wait for the quota to reset."
        )
    elif isinstance(error, RateLimitError):
        category = ErrorCategory.RATE_LIMIT
        user_message = (
            f"Too many requests to {name}. Please wait a moment and try again."
        )
    elif isinstance(error, (RequestTimeoutError, RetryAbortedError)):
        category = ErrorCategory.TIMEOUT
        user_message = (
            f"The request to {name} timed out. "
            f"Please check your connection and try again."
        )
    elif isinstance(error, NetworkError):
        category = ErrorCategory.NETWORK
        user_message = (
            f"Could not reach {name}. Please check your internet connection."
        )
    elif isinstance(error, ServerError):
        category = ErrorCategory.SERVER
        user_message = (
            f"The {name} service is currently experiencing issues. "
            f"Please try again later."
        )
    elif isinstance(error, LocationNotFoundError):
        category = ErrorCategory.VALIDATION
        user_message = f"{name} could not find the location '{error.location}'."
    else:
        category = ErrorCategory.UNKNOWN
        user_message = f"An unexpected error occurred while calling {name}."

    return ErrorReport(
        category=category,
        service_id=service_id,
        message=str(error),
        user_message=user_message,
    )
