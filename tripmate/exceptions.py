"""
HTTP exceptions for the key proxy and the mapping from gateway errors
"""

from fastapi import HTTPException, status

from tripmate.services.errors import (
    ApiErrorType,
    ApiError,
    CircuitOpenError,
    LocationNotFoundError,
    NotConfiguredError,
    ServiceError,
)


class ProxyError(HTTPException):
    """Base for errors the proxy answers as {"error": detail}"""


class BadRequestError(ProxyError):
    """Missing or invalid query parameter"""

    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundError(ProxyError):
    """Not found error exception"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ServerKeyMissingError(ProxyError):
    """The proxy itself has no key for the provider"""

    def __init__(self, detail: str = "API key not configured"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail
        )


class UpstreamError(ProxyError):
    """A provider call failed after the gateway's retries"""

    def __init__(self, detail: str, status_code: int = status.HTTP_502_BAD_GATEWAY):
        super().__init__(status_code=status_code, detail=detail)


UPSTREAM_STATUS = {
    ApiErrorType.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ApiErrorType.QUOTA_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ApiErrorType.RATE_LIMIT: status.HTTP_429_TOO_MANY_REQUESTS,
    ApiErrorType.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def to_proxy_error(error: ServiceError) -> ProxyError:
    """Map a gateway/service error onto the proxy's HTTP status."""
    if isinstance(error, NotConfiguredError):
        return ServerKeyMissingError(str(error))
    if isinstance(error, LocationNotFoundError):
        return NotFoundError(str(error))
    if isinstance(error, CircuitOpenError):
        return UpstreamError(str(error), status.HTTP_503_SERVICE_UNAVAILABLE)
    if isinstance(error, ApiError):
        return UpstreamError(
            str(error),
            UPSTREAM_STATUS.get(error.error_type, status.HTTP_502_BAD_GATEWAY),
        )
    return UpstreamError(str(error))
