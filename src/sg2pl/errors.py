"""Provider error taxonomy.

Every failure raised by an AWS call is translated into one of four classes
before it reaches the reconciler:

- ResourceNotFoundError: the security group or prefix list is gone (permanent)
- TransientError: throttling, outages, timeouts (retryable)
- VersionConflictError: optimistic-concurrency rejection on modify (retry with fresh reads)
- PermanentError: anything else the caller cannot fix by retrying

The reconciler maps these classes onto sync outcomes; nothing above this
module inspects raw botocore error codes.
"""

from __future__ import annotations

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


class ProviderError(Exception):
    """Base class for translated AWS errors."""

    def __init__(self, message: str, *, code: str = "", operation: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.operation = operation


class ResourceNotFoundError(ProviderError):
    """Raised when a referenced security group or prefix list no longer exists."""

    pass


class TransientError(ProviderError):
    """Raised for throttling or momentary unavailability."""

    pass


class VersionConflictError(ProviderError):
    """Raised when a version-guarded modify is rejected."""

    pass


class PermanentError(ProviderError):
    """Raised for non-retryable provider failures (access denied, bad input)."""

    pass


NOT_FOUND_CODES = frozenset(
    {
        "InvalidGroup.NotFound",
        "InvalidGroupId.NotFound",
        "InvalidGroupId.Malformed",
        "InvalidPrefixListID.NotFound",
        "InvalidPrefixListId.NotFound",
        "InvalidPrefixListID.Malformed",
    }
)

THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "RequestThrottled",
        "RequestThrottledException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "Unavailable",
        "InternalError",
        "InternalFailure",
        "InternalServerError",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)

CONFLICT_CODES = frozenset(
    {
        "InvalidPrefixListVersion",
        "PrefixListVersionMismatch",
        "IncorrectState",
        "IncorrectPrefixListState",
    }
)

_CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


def error_code(error: ClientError) -> str:
    """Extract the AWS error code from a ClientError."""
    return str(error.response.get("Error", {}).get("Code", ""))


def translate_error(error: Exception, operation: str = "") -> ProviderError:
    """Translate a botocore exception into the provider taxonomy.

    Args:
        error: Exception raised by a boto3 client call.
        operation: Name of the API operation, for log context.

    Returns:
        The matching ProviderError subclass instance. Errors already in the
        taxonomy are returned unchanged.
    """
    if isinstance(error, ProviderError):
        return error

    if isinstance(error, ClientError):
        code = error_code(error)
        message = str(error.response.get("Error", {}).get("Message", "")) or str(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

        if code in NOT_FOUND_CODES or code.endswith(".NotFound"):
            return ResourceNotFoundError(message, code=code, operation=operation)
        if code in CONFLICT_CODES:
            return VersionConflictError(message, code=code, operation=operation)
        if code in THROTTLING_CODES or (isinstance(status, int) and status >= 500):
            return TransientError(message, code=code, operation=operation)
        return PermanentError(message, code=code, operation=operation)

    if isinstance(error, _CONNECTION_ERRORS):
        return TransientError(str(error), code=type(error).__name__, operation=operation)

    if isinstance(error, BotoCoreError):
        return PermanentError(str(error), code=type(error).__name__, operation=operation)

    return PermanentError(str(error), code=type(error).__name__, operation=operation)
