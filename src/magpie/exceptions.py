"""
Exception classes for the magpie aggregation pipeline.

All exceptions inherit from MagpieError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class MagpieError(Exception):
    """Base exception for all magpie errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class LoadError(MagpieError):
    """Raised when the source list cannot be loaded or holds no usable URLs."""

    pass


def describe_cause(cause: Optional[BaseException]) -> str:
    """Readable text for an error, even one whose str() is empty."""
    if cause is None:
        return "unknown error"
    return str(cause) or type(cause).__name__


class FetchError(MagpieError):
    """Raised when a source URL could not be fetched after all attempts."""

    def __init__(
        self,
        url: str,
        cause: Optional[BaseException] = None,
        attempts: int = 0,
        message: Optional[str] = None,
    ) -> None:
        self.url = url
        self.cause = cause
        self.attempts = attempts
        self.reason = describe_cause(cause)
        if message is None:
            if attempts > 1:
                message = f"failed to fetch {url}: failed after {attempts} attempts: {self.reason}"
            else:
                message = f"failed to fetch {url}: {self.reason}"
        super().__init__(
            code="fetch_error",
            message=message,
            details={
                "url": url,
                "attempts": attempts,
                "cause_type": type(cause).__name__ if cause is not None else None,
            },
        )


class SourceResponseError(MagpieError):
    """Raised when a single fetch attempt gets an unusable or late response."""

    pass


class NoDomainsError(MagpieError):
    """Raised when no domains were found across all sources."""

    pass


class OutputError(MagpieError):
    """Raised when the aggregated list cannot be written."""

    pass


class PersistenceError(MagpieError):
    """Raised when health statistics cannot be read or written."""

    pass


class ConnectivityError(MagpieError):
    """Raised when no network connectivity could be established."""

    pass


class ConfigError(MagpieError):
    """Raised when settings are unusable, before any network work starts."""

    pass
