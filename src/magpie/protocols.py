"""
Interfaces the pipeline consumes from its collaborators.

The fetch stage reports per-URL outcomes to a source health tracker, and
every stage may emit progress events to a listener. Neither is needed for
correctness; both are optional.
"""

from typing import Protocol, runtime_checkable

from .models import FetchProgress, RunSummary, ValidationProgress


@runtime_checkable
class SourceHealth(Protocol):
    """Remembers how each source URL performed across runs."""

    def filter_urls(self, urls: list[str]) -> tuple[list[str], list[str]]:
        """Split URLs into (active, filtered) lists."""
        ...

    def record_success(self, url: str, domain_count: int) -> None:
        ...

    def record_failure(self, url: str, error_message: str) -> None:
        ...


@runtime_checkable
class ProgressListener(Protocol):
    """Receives progress events; must not raise."""

    def on_fetch_progress(self, event: FetchProgress) -> None:
        ...

    def on_validation_progress(self, event: ValidationProgress) -> None:
        ...

    def on_summary(self, summary: RunSummary) -> None:
        ...
