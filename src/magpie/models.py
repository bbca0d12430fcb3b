"""
Data models for the magpie pipeline.

This module defines the data structures passed between the fetch,
validation, and reporting stages, plus the persisted source health record.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .enums import PipelineState, ValidationMode
from .exceptions import FetchError


@dataclass
class FetchResult:
    """Domains produced by one successful source fetch."""

    url: str
    domains: set[str]
    attempts: int = 1
    lines_read: int = 0


@dataclass
class FetchSummary:
    """Merged outcome of fetching every source URL."""

    domains: set[str] = field(default_factory=set)
    duplicates: int = 0
    urls_fetched: int = 0
    errors: list[FetchError] = field(default_factory=list)
    domains_per_url: dict[str, int] = field(default_factory=dict)


@dataclass
class ValidationSummary:
    """Merged outcome of validating the global domain set."""

    valid: set[str]
    valid_count: int
    invalid_count: int
    mode: ValidationMode


@dataclass
class CacheEntry:
    """A cached DNS validation outcome."""

    domain: str
    valid: bool
    timestamp: float


@dataclass
class FetchProgress:
    """Emitted once per successfully fetched source."""

    url: str
    worker_id: int
    domains_found: int
    total_domains: int


@dataclass
class ValidationProgress:
    """Emitted periodically while validating."""

    processed: int
    valid: int
    invalid: int
    total: int
    rate_per_second: float = 0.0

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return self.processed / self.total * 100


@dataclass
class URLStats:
    """Persistent health record for a single source URL."""

    url: str
    success_count: int = 0
    failure_count: int = 0
    last_success: Optional[str] = None
    last_failure: Optional[str] = None
    last_error: str = ""
    blacklisted: bool = False
    blacklisted_at: Optional[str] = None
    total_domains: int = 0
    last_checked: Optional[str] = None


@dataclass
class RunTotals:
    """Global totals of the most recent run, stored alongside URL stats."""

    timestamp: str
    urls_fetched: int
    urls_failed: int
    domains_fetched: int
    unique_domains: int
    duplicates: int
    valid_domains: int
    invalid_domains: int
    validation_method: str


@dataclass
class RunSummary:
    """Final counts reported by the pipeline driver."""

    urls_loaded: int = 0
    urls_filtered: int = 0
    urls_fetched: int = 0
    domains_found: int = 0
    duplicates_removed: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    mode: ValidationMode = ValidationMode.NONE
    output_path: Optional[Path] = None
    errors: list[str] = field(default_factory=list)
    filtered_urls: list[str] = field(default_factory=list)
    state: PipelineState = PipelineState.IDLE
    duration_seconds: float = 0.0

    def error_sample(self, limit: int = 5) -> list[str]:
        """Return at most ``limit`` error messages."""
        return self.errors[:limit]
