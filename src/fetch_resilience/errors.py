"""
Error classification for fetch_resilience.

Maps raw transport failures (network errors, timeouts, failing HTTP
statuses) into a normalized AppError with a category, a stable code, a
user-facing message and a retryability verdict.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .transport import (
    CONNECTION_ABORTED,
    CONNECTION_REFUSED,
    CONNECTION_RESET,
    DNS_NOT_FOUND,
    DNS_TRY_AGAIN,
    NETWORK_ERROR_MESSAGE,
    NETWORK_UNREACHABLE,
    TIMED_OUT,
    error_code_for,
)
from .types import AppError, ErrorCategory, RetryPolicy


logger = logging.getLogger("fetch_resilience.errors")


class ERROR_CODES:
    """Stable error codes"""

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    NO_INTERNET = "NO_INTERNET"
    SERVER_UNREACHABLE = "SERVER_UNREACHABLE"

    # Timeout
    TIMEOUT = "TIMEOUT"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"

    # Server
    SERVER_ERROR = "SERVER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    BAD_GATEWAY = "BAD_GATEWAY"

    # Client
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    CLIENT_ERROR = "CLIENT_ERROR"

    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    UNKNOWN = "UNKNOWN"


USER_MESSAGES: Dict[str, str] = {
    ERROR_CODES.NETWORK_ERROR: "Unable to connect to the server. Please check your internet connection.",
    ERROR_CODES.NO_INTERNET: "No internet connection. Please check your network settings.",
    ERROR_CODES.SERVER_UNREACHABLE: "Cannot reach the server. Please try again later.",
    ERROR_CODES.TIMEOUT: "Request timed out. Please check your connection and try again.",
    ERROR_CODES.REQUEST_TIMEOUT: "The request took too long. Please try again.",
    ERROR_CODES.CONNECTION_TIMEOUT: "Connection timeout. Please check your internet connection.",
    ERROR_CODES.SERVER_ERROR: "Server error occurred. Please try again later.",
    ERROR_CODES.SERVICE_UNAVAILABLE: "Service is temporarily unavailable. Please try again later.",
    ERROR_CODES.BAD_GATEWAY: "Server communication error. Please try again.",
    ERROR_CODES.BAD_REQUEST: "Invalid request. Please check your input.",
    ERROR_CODES.VALIDATION_ERROR: "Please check your input and try again.",
    ERROR_CODES.NOT_FOUND: "The requested resource was not found.",
    ERROR_CODES.TOO_MANY_REQUESTS: "Too many requests. Please wait a moment and try again.",
    ERROR_CODES.CLIENT_ERROR: "The request could not be completed.",
    ERROR_CODES.UNAUTHORIZED: "Please log in to continue.",
    ERROR_CODES.FORBIDDEN: "You do not have permission to perform this action.",
    ERROR_CODES.UNKNOWN: "An unexpected error occurred. Please try again.",
}

STATUS_CODES: Dict[int, str] = {
    400: ERROR_CODES.BAD_REQUEST,
    401: ERROR_CODES.UNAUTHORIZED,
    403: ERROR_CODES.FORBIDDEN,
    404: ERROR_CODES.NOT_FOUND,
    408: ERROR_CODES.REQUEST_TIMEOUT,
    422: ERROR_CODES.VALIDATION_ERROR,
    429: ERROR_CODES.TOO_MANY_REQUESTS,
    500: ERROR_CODES.SERVER_ERROR,
    502: ERROR_CODES.BAD_GATEWAY,
    503: ERROR_CODES.SERVICE_UNAVAILABLE,
    504: ERROR_CODES.CONNECTION_TIMEOUT,
}

# Transport codes meaning the request never reached the server
NETWORK_TRANSPORT_CODES = frozenset({
    DNS_NOT_FOUND,
    NETWORK_UNREACHABLE,
    CONNECTION_REFUSED,
    CONNECTION_RESET,
    DNS_TRY_AGAIN,
})

TIMEOUT_TRANSPORT_CODES = frozenset({CONNECTION_ABORTED, TIMED_OUT})

_DEFAULT_POLICY = RetryPolicy()


def _error_fields(raw: BaseException):
    """Extract (message, code, status, response data) from any exception."""
    if isinstance(raw, httpx.TimeoutException):
        return str(raw) or "timeout exceeded", error_code_for(raw), None, None
    if isinstance(raw, httpx.TransportError):
        return NETWORK_ERROR_MESSAGE, error_code_for(raw), None, None

    message = str(raw) or type(raw).__name__
    code = getattr(raw, "code", None)
    if not isinstance(code, str):
        code = None
    response = getattr(raw, "response", None)
    status = getattr(response, "status_code", None) if response is not None else None
    data = getattr(response, "data", None) if response is not None else None
    return message, code, status, data


def _is_timeout(message: str, code: Optional[str], raw: Optional[BaseException] = None) -> bool:
    if code in TIMEOUT_TRANSPORT_CODES:
        return True
    if isinstance(raw, (TimeoutError, asyncio.TimeoutError)):
        return True
    lowered = message.lower()
    return "timeout" in lowered or "timed out" in lowered


def categorize_error(raw: BaseException) -> ErrorCategory:
    """
    Categorize a raw failure. First match wins.

    Args:
        raw: The exception raised by a dispatch

    Returns:
        Error category
    """
    message, code, status, _ = _error_fields(raw)

    if status is None and (message == NETWORK_ERROR_MESSAGE or code in NETWORK_TRANSPORT_CODES):
        return ErrorCategory.NETWORK

    if _is_timeout(message, code, raw):
        return ErrorCategory.TIMEOUT

    if status is not None:
        if status in (401, 403):
            return ErrorCategory.AUTHENTICATION
        if status in (400, 422):
            return ErrorCategory.VALIDATION
        if 400 <= status < 500:
            return ErrorCategory.CLIENT
        if status >= 500:
            return ErrorCategory.SERVER

    return ErrorCategory.UNKNOWN


def get_error_code(raw: BaseException, category: Optional[ErrorCategory] = None) -> str:
    """
    Get the stable error code for a raw failure.

    Args:
        raw: The exception raised by a dispatch
        category: Precomputed category, if available

    Returns:
        Error code from ERROR_CODES
    """
    category = category or categorize_error(raw)
    _, _, status, _ = _error_fields(raw)

    if category == ErrorCategory.NETWORK:
        return ERROR_CODES.NETWORK_ERROR
    if category == ErrorCategory.TIMEOUT:
        return ERROR_CODES.TIMEOUT
    if status is not None:
        if status in STATUS_CODES:
            return STATUS_CODES[status]
        if status >= 500:
            return ERROR_CODES.SERVER_ERROR
        if status >= 400:
            return ERROR_CODES.CLIENT_ERROR
    return ERROR_CODES.UNKNOWN


def is_retryable_error(
    raw: BaseException,
    category: ErrorCategory,
    policy: Optional[RetryPolicy] = None,
) -> bool:
    """
    Derive retryability from the category and the policy.

    NETWORK, TIMEOUT and SERVER errors are always retryable. Authentication
    and validation failures never are. Other failures are retryable only
    when the policy lists their status or transport code.
    """
    if category in (ErrorCategory.NETWORK, ErrorCategory.TIMEOUT, ErrorCategory.SERVER):
        return True
    if category in (ErrorCategory.AUTHENTICATION, ErrorCategory.VALIDATION):
        return False

    policy = policy or _DEFAULT_POLICY
    _, code, status, _ = _error_fields(raw)

    if status is not None and status in policy.retryable_statuses:
        return True
    if code is not None and code in policy.retryable_error_codes:
        return True
    return False


def get_user_message(code: str, response_data: Any = None) -> str:
    """
    Get the user-facing message.

    A string ``message`` in the server's JSON body wins over the static table.
    """
    if isinstance(response_data, dict):
        server_message = response_data.get("message")
        if isinstance(server_message, str) and server_message:
            return server_message
    return USER_MESSAGES.get(code, USER_MESSAGES[ERROR_CODES.UNKNOWN])


def get_technical_message(raw: BaseException) -> str:
    """Build a one-line technical description for logs."""
    message, code, status, _ = _error_fields(raw)
    parts = [message]
    if code:
        parts.append(f"Code: {code}")
    if status is not None:
        parts.append(f"Status: {status}")
    request = getattr(raw, "request", None)
    url = getattr(request, "url", None)
    if url:
        parts.append(f"URL: {url}")
    return " | ".join(parts)


def classify(raw: Any, policy: Optional[RetryPolicy] = None) -> AppError:
    """
    Classify a raw failure into an AppError.

    An AppError is returned unchanged, it is never re-classified.

    Args:
        raw: TransportError, any other exception, or an AppError
        policy: Retry policy of the request, used for retryability

    Returns:
        Normalized AppError

    Example:
        error = classify(TransportError("timeout", code="ECONNABORTED"))
        assert error.category == ErrorCategory.TIMEOUT
    """
    if isinstance(raw, AppError):
        return raw

    if not isinstance(raw, BaseException):
        raw = Exception(str(raw))

    message, _, status, data = _error_fields(raw)
    category = categorize_error(raw)
    code = get_error_code(raw, category)
    request = getattr(raw, "request", None)

    return AppError(
        category=category,
        code=code,
        message=message,
        user_message=get_user_message(code, data),
        status_code=status,
        retryable=is_retryable_error(raw, category, policy),
        technical_message=get_technical_message(raw),
        details={
            "url": getattr(request, "url", None),
            "method": getattr(request, "method", None),
            "data": data,
        },
    )


def create_error(
    category: ErrorCategory,
    code: str,
    message: str,
    user_message: Optional[str] = None,
    retryable: bool = False,
) -> AppError:
    """Create an AppError directly, for failures detected before dispatch."""
    return AppError(
        category=category,
        code=code,
        message=message,
        user_message=user_message or USER_MESSAGES.get(code, message),
        retryable=retryable,
    )


def log_error(error: AppError, context: Optional[str] = None) -> None:
    """Log an AppError at ERROR level."""
    prefix = f"[{context}] " if context else ""
    logger.error(
        f"{prefix}{error.category.value} error: code={error.code}, "
        f"status={error.status_code}, retryable={error.retryable}, "
        f"message={error.message!r}, technical={error.technical_message!r}"
    )


def handle_error(raw: Any, context: Optional[str] = None, policy: Optional[RetryPolicy] = None) -> AppError:
    """Classify and log in one step."""
    error = classify(raw, policy)
    log_error(error, context)
    return error


def get_error_summary(error: AppError) -> str:
    """Join the user message with category hints."""
    parts = [error.user_message]
    if error.retryable:
        parts.append("This error is temporary. Please try again.")
    if error.category == ErrorCategory.NETWORK:
        parts.append("Check your internet connection and try again.")
    if error.category == ErrorCategory.TIMEOUT:
        parts.append("The request took too long. Please check your connection.")
    return " ".join(parts)


_TROUBLESHOOTING: Dict[ErrorCategory, List[str]] = {
    ErrorCategory.TIMEOUT: [
        "Check your internet connection",
        "Try moving closer to your WiFi router",
        "Verify the backend server is running",
        "The server might be experiencing high load",
        "Try again in a few moments",
    ],
    ErrorCategory.NETWORK: [
        "Check your WiFi or mobile data connection",
        "Try toggling airplane mode on and off",
        "Verify you have internet access",
        "Check if other apps can connect to the internet",
    ],
    ErrorCategory.AUTHENTICATION: [
        "Verify your email and password are correct",
        "Check if your account is active",
        "Try resetting your password if needed",
    ],
    ErrorCategory.VALIDATION: [
        "Check that all required fields are filled",
        "Verify the format of your input",
        "Review any field-specific error messages",
    ],
    ErrorCategory.SERVER: [
        "The server is experiencing issues",
        "Please try again in a few minutes",
        "Contact support if the problem persists",
    ],
}

_DEFAULT_TROUBLESHOOTING = [
    "Try again in a few moments",
    "Check your internet connection",
    "Contact support if the issue continues",
]


def get_troubleshooting_steps(error: AppError) -> List[str]:
    """Troubleshooting steps for the error's category."""
    return list(_TROUBLESHOOTING.get(error.category, _DEFAULT_TROUBLESHOOTING))


def get_detailed_error_info(error: AppError) -> Dict[str, Any]:
    """Summary, details and troubleshooting for debugging screens."""
    return {
        "summary": error.user_message,
        "details": [
            f"Error Code: {error.code}",
            f"Category: {error.category.value}",
            f"Retryable: {'Yes' if error.retryable else 'No'}",
            f"Timestamp: {error.timestamp}",
        ],
        "troubleshooting": get_troubleshooting_steps(error),
        "technical_info": error.technical_message,
    }
