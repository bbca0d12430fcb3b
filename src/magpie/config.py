"""
Configuration dataclasses for the magpie pipeline.

This module defines all configuration structures used throughout the system,
including fetching, retry behavior, validation, source health tracking,
and logging configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .enums import ValidationMode


DEFAULT_RESOLVERS = [
    "1.1.1.1:53",
    "1.0.0.1:53",
    "8.8.8.8:53",
    "8.8.4.4:53",
    "9.9.9.9:53",
    "149.112.112.112:53",
]


@dataclass
class RetryConfig:
    """Retry behavior configuration for source fetching."""

    attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = 0.5


@dataclass
class FetchConfig:
    """HTTP settings for downloading source lists."""

    concurrency: int = 5
    timeout_seconds: float = 30.0
    max_redirects: int = 10
    max_line_bytes: int = 1024 * 1024
    cancel_check_interval: int = 1000
    user_agent: str = "Magpie/1.0"


@dataclass
class ValidationConfig:
    """DNS/HTTP reachability validation settings."""

    enable_dns: bool = True
    enable_http: bool = False
    concurrency: int = 100
    resolvers: list[str] = field(default_factory=list)
    enable_cache: bool = True
    cache_ttl_seconds: float = 300.0
    dns_timeout_seconds: float = 0.5
    http_timeout_seconds: float = 8.0
    http_max_redirects: int = 5
    progress_interval: int = 10000

    @property
    def mode(self) -> ValidationMode:
        return ValidationMode.from_flags(self.enable_dns, self.enable_http)


@dataclass
class TrackingConfig:
    """Source health tracking configuration."""

    enabled: bool = True
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    max_failures: int = 3


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'
    quiet: bool = False
    silent: bool = False


@dataclass
class PipelineConfig:
    """Main configuration for one aggregation run."""

    source_file: Path
    output_file: Path = field(default_factory=lambda: Path("aggregated.txt"))
    fetch: FetchConfig = field(default_factory=FetchConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    strict_sources: bool = True
    connectivity_check: bool = False
    connectivity_hosts: Optional[list[str]] = None
