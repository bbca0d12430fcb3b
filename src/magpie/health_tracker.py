"""
Health Tracker module for source URLs.

Persists per-URL success and failure counts in ``stats.json`` inside a data
directory, and filters out sources that keep failing.
"""

import copy
import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .exceptions import PersistenceError
from .models import RunTotals, URLStats


STATS_FILE = "stats.json"
MAX_FAILURES = 3


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthTracker:
    """
    Persistent per-URL health statistics.

    A URL is blacklisted once its failure count reaches ``max_failures``.
    A later success clears the blacklist and resets the failure count.
    """

    def __init__(self, data_dir: Path, max_failures: int = MAX_FAILURES) -> None:
        """
        Initialize the tracker.

        Args:
            data_dir: Directory holding the stats file
            max_failures: Failures after which a URL is filtered out
        """
        self._data_dir = Path(data_dir)
        self._max_failures = max_failures
        self._stats: dict[str, URLStats] = {}
        self._last_run: Optional[RunTotals] = None

    @classmethod
    def open(cls, data_dir: Path, max_failures: int = MAX_FAILURES) -> "HealthTracker":
        """Create the data directory if needed and load any existing stats."""
        tracker = cls(data_dir, max_failures)
        try:
            tracker._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to create data directory: {e}",
                details={"data_dir": str(data_dir)},
            )
        tracker.load()
        return tracker

    @property
    def file_path(self) -> Path:
        return self._data_dir / STATS_FILE

    @property
    def max_failures(self) -> int:
        return self._max_failures

    @property
    def last_run(self) -> Optional[RunTotals]:
        return self._last_run

    def load(self) -> bool:
        """
        Load stats from disk.

        Returns:
            True if a stats file was read, False if none exists yet

        Raises:
            PersistenceError: If the file cannot be read or parsed
        """
        if not self.file_path.exists():
            return False

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse stats file: {e}",
                details={"file_path": str(self.file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read stats file: {e}",
                details={"file_path": str(self.file_path)},
            )

        try:
            self._stats = {
                url: URLStats(**record)
                for url, record in raw_data.get("urls", {}).items()
            }
            last_run = raw_data.get("last_run")
            self._last_run = RunTotals(**last_run) if last_run else None
        except TypeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Unexpected stats file layout: {e}",
                details={"file_path": str(self.file_path)},
            )

        return True

    def save(self) -> None:
        """
        Write stats to disk.

        Raises:
            PersistenceError: If the file cannot be written
        """
        output_data = {
            "urls": {url: asdict(stat) for url, stat in sorted(self._stats.items())},
            "last_run": asdict(self._last_run) if self._last_run else None,
        }

        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.file_path, "w", encoding="utf-8") as f:
                json.dump(output_data, f, indent=2)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write stats file: {e}",
                details={"file_path": str(self.file_path)},
            )

    def _get_or_create(self, url: str) -> URLStats:
        stat = self._stats.get(url)
        if stat is None:
            stat = URLStats(url=url)
            self._stats[url] = stat
        return stat

    def is_blacklisted(self, url: str) -> bool:
        stat = self._stats.get(url)
        if stat is None:
            return False
        return stat.blacklisted or stat.failure_count >= self._max_failures

    def record_success(self, url: str, domain_count: int) -> None:
        stat = self._get_or_create(url)
        now = _now()

        stat.success_count += 1
        stat.last_success = now
        stat.last_checked = now
        stat.total_domains = domain_count
        stat.last_error = ""

        # A recovered source starts over
        if stat.blacklisted or stat.failure_count >= self._max_failures:
            stat.blacklisted = False
            stat.blacklisted_at = None
            stat.failure_count = 0

    def record_failure(self, url: str, error_message: str) -> None:
        stat = self._get_or_create(url)
        now = _now()

        stat.failure_count += 1
        stat.last_failure = now
        stat.last_checked = now
        stat.last_error = error_message

        if stat.failure_count >= self._max_failures and not stat.blacklisted:
            stat.blacklisted = True
            stat.blacklisted_at = now

    def record_run(
        self,
        urls_fetched: int,
        urls_failed: int,
        domains_fetched: int,
        unique_domains: int,
        duplicates: int,
        valid_domains: int,
        invalid_domains: int,
        validation_method: str,
    ) -> None:
        """Remember the totals of the run that just finished."""
        self._last_run = RunTotals(
            timestamp=_now(),
            urls_fetched=urls_fetched,
            urls_failed=urls_failed,
            domains_fetched=domains_fetched,
            unique_domains=unique_domains,
            duplicates=duplicates,
            valid_domains=valid_domains,
            invalid_domains=invalid_domains,
            validation_method=validation_method,
        )

    def filter_urls(self, urls: list[str]) -> tuple[list[str], list[str]]:
        """
        Split URLs into active and blacklisted lists, keeping input order.

        Returns:
            Tuple of (active, filtered)
        """
        active: list[str] = []
        filtered: list[str] = []
        for url in urls:
            if self.is_blacklisted(url):
                filtered.append(url)
            else:
                active.append(url)
        return active, filtered

    def blacklisted_urls(self) -> list[str]:
        return sorted(url for url in self._stats if self.is_blacklisted(url))

    def get_stats(self, url: str) -> Optional[URLStats]:
        """Return a copy of the stats for a URL, or None if never seen."""
        stat = self._stats.get(url)
        return copy.copy(stat) if stat is not None else None

    def all_stats(self) -> list[URLStats]:
        return [copy.copy(stat) for _, stat in sorted(self._stats.items())]

    def reset_url(self, url: str) -> bool:
        """
        Clear the blacklist for a URL (manual intervention).

        Returns:
            True if the URL was known
        """
        stat = self._stats.get(url)
        if stat is None:
            return False
        stat.blacklisted = False
        stat.blacklisted_at = None
        stat.failure_count = 0
        return True
