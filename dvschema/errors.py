"""
Error classes for dvschema.

These error types enable retry classification at remote-call boundaries:
- RateLimitedError: Safe to retry (throttling, service protection limits)
- NotFoundError: The requested table/field does not exist (a normal outcome)
- RegistryError: Any other remote failure - do not retry

Local errors never trigger a retry:
- InputError: Bad or missing input rows/columns, fatal to the whole run
- ConfigError: Invalid configuration
- ResolutionError: A type token could not be resolved into a field descriptor

Error handling contract:
- Remote clients raise RegistryError subclasses, never raw transport errors
- Stages record per-record failures on the SchemaRecord and keep going
- Only input-shape problems and resolver invariant violations abort a run
"""

from enum import Enum
from typing import Optional


class DvSchemaError(Exception):
    """Base exception for dvschema."""
    pass


class InputError(DvSchemaError):
    """
    Input error - fatal before any remote call.

    Examples:
    - Required column missing from the input file
    - Empty record batch handed to the orchestrator
    - Input file locked or unreadable after retries
    """
    pass


class ConfigError(DvSchemaError):
    """Configuration validation error."""
    pass


class ResolutionError(DvSchemaError):
    """
    A record's type could not be resolved into a field descriptor.

    Raised for unsupported type tokens and for choice/lookup/customer
    types missing their auxiliary data. Never carries a partial result.
    """
    pass


class RegistryError(DvSchemaError):
    """
    Remote registry error - do not retry.

    Attributes:
        status: HTTP status code, if the failure came from an HTTP response
        code: Registry-specific error code, if one was reported
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[int] = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code


class RateLimitedError(RegistryError):
    """
    Transient error - safe to retry.

    Examples:
    - HTTP 429 Too Many Requests
    - Service protection API limit exceeded

    The retry policy backs off and retries operations that raise
    RateLimitedError; retry_after carries the server's hint in seconds.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status=status, code=code)
        self.retry_after = retry_after


class NotFoundError(RegistryError):
    """
    The table (or other metadata object) does not exist in the registry.

    Not a failure for the prober: it signals "will be created".
    """
    pass


class ErrorClass(str, Enum):
    """Classification of a failure raised around a remote call."""
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    OTHER = "other"
    LOCAL = "local"


def classify(exc: BaseException) -> ErrorClass:
    """
    Classify an exception for retry and reporting decisions.

    Args:
        exc: Exception raised by (or around) a remote call

    Returns:
        RATE_LIMITED / NOT_FOUND / OTHER for registry errors,
        LOCAL for everything that did not come from the registry
    """
    if isinstance(exc, RateLimitedError):
        return ErrorClass.RATE_LIMITED
    if isinstance(exc, NotFoundError):
        return ErrorClass.NOT_FOUND
    if isinstance(exc, RegistryError):
        return ErrorClass.OTHER
    return ErrorClass.LOCAL
