"""
Enumeration types for the magpie pipeline.

These enums provide type-safe constants for validation modes, pipeline
states, and logging levels throughout the system.
"""

from enum import Enum


class ValidationMode(Enum):
    """How fetched domains are checked before being written."""

    NONE = "none"
    DNS = "dns"
    HTTP_DNS = "dns+http"

    @classmethod
    def from_flags(cls, enable_dns: bool, enable_http: bool) -> "ValidationMode":
        """HTTP validation always runs behind the DNS filter."""
        if enable_http:
            return cls.HTTP_DNS
        if enable_dns:
            return cls.DNS
        return cls.NONE


class PipelineState(Enum):
    """Lifecycle of a single aggregation run."""

    IDLE = "idle"
    FETCHING = "fetching"
    VALIDATING = "validating"
    SKIP_VALIDATION = "skip_validation"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}
