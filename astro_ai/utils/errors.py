# =============================================
# File: astro_ai/utils/errors.py
# Purpose: Error taxonomy shared by the AI services
# =============================================
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    VALIDATION = "VALIDATION"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"


# HTTP status used by the routers for each code
HTTP_STATUS = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.RATE_LIMIT: 429,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.INVALID_RESPONSE: 502,
}


class ServiceError(Exception):
    """
    Base error for anything a service returns to its caller.

    `message` is user-visible: it must stay short (10-200 chars) and never
    carry stack traces, paths or vendor names. Internal detail goes in `detail`,
    which is only logged.
    """
    code: ErrorCode = ErrorCode.SERVICE_UNAVAILABLE
    default_message = "The service is temporarily unavailable. Please try again later."

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(ServiceError):
    code = ErrorCode.VALIDATION
    default_message = "The request is missing required fields or is malformed."


class SessionClosedError(ValidationError):
    default_message = "This chat session is closed and cannot accept messages."


class RateLimitError(ServiceError):
    code = ErrorCode.RATE_LIMIT
    default_message = "Too many messages. Please try again later."

    def __init__(self, retry_after_s: float = 0.0, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class NotFoundError(ServiceError):
    code = ErrorCode.NOT_FOUND
    default_message = "Chat session not found or expired."


class ServiceUnavailableError(ServiceError):
    code = ErrorCode.SERVICE_UNAVAILABLE


class ServiceTimeoutError(ServiceError):
    code = ErrorCode.TIMEOUT
    default_message = "The assistant took too long to respond. Please try again."


class InvalidResponseError(ServiceError):
    code = ErrorCode.INVALID_RESPONSE
    default_message = "The assistant returned an unreadable response. Please try again."


# ---- provider-layer errors (raised by ProviderClient implementations) ----

class ProviderError(Exception):
    """Non-retryable provider failure (bad request, auth, unknown)."""
    retryable = False


class TransientProviderError(ProviderError):
    """Connection reset, 5xx, upstream throttling: worth another attempt."""
    retryable = True


class ProviderTimeoutError(TransientProviderError):
    pass


class InvalidProviderResponseError(ProviderError):
    """Malformed payload. Never retried."""
    retryable = False


class RequestCancelled(ProviderError):
    """Caller cancelled (or its deadline passed) while a call was in flight."""
    retryable = False


class PoolSaturatedError(ProviderError):
    """Every worker of the collaborator's pool is still busy; fail fast."""
    retryable = False
