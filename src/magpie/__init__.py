"""
Magpie - High-performance blocklist aggregator.

This package fetches plaintext domain blocklists from many sources, normalizes
and deduplicates their entries, optionally validates each domain via DNS and
HTTP, and writes the surviving set to a single file.
"""

__version__ = "1.0.0"
__author__ = "Magpie Team"

from magpie.exceptions import (
    MagpieError,
    LoadError,
    FetchError,
    SourceResponseError,
    NoDomainsError,
    OutputError,
    PersistenceError,
    ConnectivityError,
    ConfigError,
)
from magpie.enums import (
    LogLevel,
    PipelineState,
    ValidationMode,
)
from magpie.domain_parser import (
    parse_domain,
    clean_domain,
    is_valid_domain,
    extract_domain,
)
from magpie.config import (
    DEFAULT_RESOLVERS,
    RetryConfig,
    FetchConfig,
    ValidationConfig,
    TrackingConfig,
    LoggingConfig,
    PipelineConfig,
)
from magpie.models import (
    FetchResult,
    FetchSummary,
    ValidationSummary,
    CacheEntry,
    FetchProgress,
    ValidationProgress,
    URLStats,
    RunTotals,
    RunSummary,
)
from magpie.protocols import (
    SourceHealth,
    ProgressListener,
)
from magpie.retry_manager import (
    RetryManager,
    RetryResult,
)
from magpie.fetcher import (
    Fetcher,
)
from magpie.fetch_orchestrator import (
    FetchOrchestrator,
)
from magpie.result_cache import (
    ResultCache,
)
from magpie.validator import (
    DNSBackend,
    ReachabilityValidator,
)
from magpie.validation_orchestrator import (
    ValidationOrchestrator,
)
from magpie.health_tracker import (
    HealthTracker,
)
from magpie.event_logger import (
    EventLogger,
    LogEntry,
    NullLogger,
)
from magpie.pipeline import (
    Pipeline,
    load_source_urls,
    write_output,
)
from magpie.reporter import (
    ConsoleReporter,
)
from magpie.self_test import (
    SelfTest,
    SelfTestResult,
    ProbeResult,
    ConfigReport,
    render_self_test,
    run_self_test,
)
from magpie.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "MagpieError",
    "LoadError",
    "FetchError",
    "SourceResponseError",
    "NoDomainsError",
    "OutputError",
    "PersistenceError",
    "ConnectivityError",
    "ConfigError",
    # Enums
    "LogLevel",
    "PipelineState",
    "ValidationMode",
    # Domain Parser
    "parse_domain",
    "clean_domain",
    "is_valid_domain",
    "extract_domain",
    # Configuration
    "DEFAULT_RESOLVERS",
    "RetryConfig",
    "FetchConfig",
    "ValidationConfig",
    "TrackingConfig",
    "LoggingConfig",
    "PipelineConfig",
    # Models
    "FetchResult",
    "FetchSummary",
    "ValidationSummary",
    "CacheEntry",
    "FetchProgress",
    "ValidationProgress",
    "URLStats",
    "RunTotals",
    "RunSummary",
    # Protocols
    "SourceHealth",
    "ProgressListener",
    # Retry Manager
    "RetryManager",
    "RetryResult",
    # Fetching
    "Fetcher",
    "FetchOrchestrator",
    # Validation
    "ResultCache",
    "DNSBackend",
    "ReachabilityValidator",
    "ValidationOrchestrator",
    # Health Tracker
    "HealthTracker",
    # Event Logger
    "EventLogger",
    "LogEntry",
    "NullLogger",
    # Pipeline
    "Pipeline",
    "load_source_urls",
    "write_output",
    # Reporter
    "ConsoleReporter",
    # Self-Test
    "SelfTest",
    "SelfTestResult",
    "ProbeResult",
    "ConfigReport",
    "render_self_test",
    "run_self_test",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
