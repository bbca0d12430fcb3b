"""
Pipeline driver for one aggregation run.

Loads the source list, filters unhealthy sources, fetches and merges every
list, validates the merged set and writes the survivors to the output file:

    IDLE -> FETCHING -> VALIDATING | SKIP_VALIDATION -> WRITING -> DONE

Any fatal error moves the pipeline to FAILED and propagates.
"""

import asyncio
import contextlib
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import PipelineConfig
from .enums import PipelineState, ValidationMode
from .event_logger import EventLogger
from .exceptions import ConfigError, LoadError, NoDomainsError, OutputError, PersistenceError
from .fetch_orchestrator import FetchOrchestrator
from .fetcher import Fetcher
from .health_tracker import HealthTracker
from .models import FetchSummary, RunSummary
from .protocols import ProgressListener
from .self_test import SelfTest
from .validation_orchestrator import ValidationOrchestrator
from .validator import ReachabilityValidator, resolver_address_problem


SOURCE_SCHEMES = ("http://", "https://")
OUTPUT_BUFFER_SIZE = 256 * 1024


def load_source_urls(
    path: Path,
    strict: bool = True,
    logger: Optional[EventLogger] = None,
) -> list[str]:
    """
    Read source URLs from a line-oriented file.

    Blank lines and ``#`` comments are skipped. In strict mode any other line
    that is not an http(s) URL is an error; otherwise it is skipped with a
    warning.

    Args:
        path: Source list file
        strict: Reject the whole file on the first bad line
        logger: Optional logger for skipped lines

    Returns:
        URLs in file order

    Raises:
        LoadError: If the file cannot be read, holds a bad line (strict),
                   or holds no URLs at all
    """
    path = Path(path)
    urls: list[str] = []

    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_num, raw_line in enumerate(f, start=1):
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue

                if not line.lower().startswith(SOURCE_SCHEMES):
                    if strict:
                        raise LoadError(
                            code="invalid_url",
                            message=(
                                f"line {line_num}: invalid URL "
                                f"(must start with http:// or https://): {line}"
                            ),
                            details={"file": str(path), "line": line_num},
                        )
                    if logger:
                        logger.warn(
                            "Pipeline",
                            f"Skipping line {line_num}: not an http(s) URL",
                            {"file": str(path), "line": line_num},
                        )
                    continue

                urls.append(line)
    except OSError as e:
        raise LoadError(
            code="io_error",
            message=f"failed to open file: {e}",
            details={"file": str(path)},
        ) from e
    except UnicodeDecodeError as e:
        raise LoadError(
            code="decode_error",
            message=f"source file is not valid UTF-8: {e}",
            details={"file": str(path)},
        ) from e

    if not urls:
        raise LoadError(
            code="no_urls",
            message="no valid URLs found in file",
            details={"file": str(path)},
        )

    return urls


def write_output(path: Path, domains: Iterable[str]) -> int:
    """
    Write domains sorted, one per line, replacing any existing file.

    Returns:
        Number of domains written

    Raises:
        OutputError: If writing fails; the partial file is removed
    """
    path = Path(path)
    ordered = sorted(domains)

    try:
        with open(
            path, "w", encoding="utf-8", newline="\n", buffering=OUTPUT_BUFFER_SIZE
        ) as f:
            for domain in ordered:
                f.write(domain)
                f.write("\n")
    except OSError as e:
        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)
        raise OutputError(
            code="write_error",
            message=f"failed to write output to {path}: {e}",
            details={"output_file": str(path)},
        ) from e

    return len(ordered)


class Pipeline:
    """
    Runs one aggregation end to end.

    Collaborators are built from the config unless injected. Injected
    fetchers and validators are left open; the ones the pipeline builds
    itself are closed when the run ends.
    """

    def __init__(
        self,
        config: PipelineConfig,
        fetcher: Optional[Fetcher] = None,
        validator: Optional[ReachabilityValidator] = None,
        health: Optional[HealthTracker] = None,
        listener: Optional[ProgressListener] = None,
        logger: Optional[EventLogger] = None,
        self_test: Optional[SelfTest] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            config: Run configuration
            fetcher: Optional preconfigured fetcher
            validator: Optional preconfigured validator
            health: Optional health tracker; opened from
                    ``config.tracking.data_dir`` when tracking is enabled
            listener: Optional progress listener
            logger: Optional event logger
            self_test: Optional connectivity checker
            clock: Monotonic clock for the run duration
        """
        self._config = config
        self._fetcher = fetcher
        self._validator = validator
        self._health = health
        self._listener = listener
        self._logger = logger
        self._self_test = self_test
        self._clock = clock or time.monotonic

        self._state = PipelineState.IDLE
        self._summary = RunSummary(
            mode=config.validation.mode,
            output_path=config.output_file,
        )
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def summary(self) -> RunSummary:
        """Counters gathered so far; complete once the run is DONE."""
        return self._summary

    @property
    def health(self) -> Optional[HealthTracker]:
        return self._health

    def cancel(self) -> bool:
        """
        Cancel a running pipeline.

        Returns:
            True if a running task was asked to cancel
        """
        if self._task is None or self._task.done():
            return False
        return self._task.cancel()

    async def run(self) -> RunSummary:
        """
        Execute the full aggregation.

        Returns:
            RunSummary with final counts and state DONE

        Raises:
            LoadError: Bad or empty source file, or no active URLs
            ConfigError: A worker count is below 1 or a resolver is not ip[:port]
            ConnectivityError: Startup connectivity check failed
            NoDomainsError: No source produced a domain
            OutputError: The output file could not be written
        """
        if self._state is not PipelineState.IDLE:
            raise RuntimeError(f"Pipeline already ran (state: {self._state.value})")

        self._task = asyncio.current_task()
        started = self._clock()
        owned: list = []
        summary = self._summary

        try:
            urls = load_source_urls(
                self._config.source_file,
                strict=self._config.strict_sources,
                logger=self._logger,
            )
            summary.urls_loaded = len(urls)
            self._log_info("Pipeline", f"Loaded {len(urls)} source URLs", {})

            self._check_config()
            active = self._filter_sources(urls)

            self_test = self._connectivity_checker()
            if self_test is not None:
                self._log_info("Pipeline", "Checking internet connection...", {})
                await self_test.ensure_connectivity()
                self._log_info("Pipeline", "Internet connection verified", {})

            self._set_state(PipelineState.FETCHING)
            fetcher = self._fetcher
            if fetcher is None:
                fetcher = Fetcher(
                    config=self._config.fetch,
                    retry_config=self._config.retry,
                    logger=self._logger,
                )
                owned.append(fetcher)

            fetched = await self._fetch(fetcher, active, self_test)

            valid = await self._validate(fetched, owned)

            self._set_state(PipelineState.WRITING)
            written = write_output(self._config.output_file, valid)
            self._log_info(
                "Pipeline",
                f"Wrote {written} domains to {self._config.output_file}",
                {"output_file": str(self._config.output_file)},
            )

            self._record_run(fetched, len(active))
            self._set_state(PipelineState.DONE)
        except BaseException:
            self._set_state(PipelineState.FAILED)
            raise
        finally:
            summary.duration_seconds = self._clock() - started
            summary.state = self._state
            for resource in owned:
                await resource.close()
            self._save_health()
            self._task = None

        if self._listener is not None:
            self._listener.on_summary(summary)

        return summary

    def _check_config(self) -> None:
        """Reject unusable worker counts and resolvers before any network work."""
        fetch, validation = self._config.fetch, self._config.validation
        validating = validation.mode is not ValidationMode.NONE

        for name, count, used in (
            ("fetch", fetch.concurrency, True),
            ("validation", validation.concurrency, validating),
        ):
            if used and count < 1:
                raise ConfigError(
                    code="invalid_workers",
                    message=f"{name} workers must be at least 1, got {count}",
                    details={"workers": count},
                )

        if not validating or self._validator is not None:
            return
        problems = [
            problem
            for problem in map(resolver_address_problem, validation.resolvers)
            if problem
        ]
        if problems:
            raise ConfigError(
                code="invalid_resolver",
                message="; ".join(problems),
                details={"resolvers": list(validation.resolvers)},
            )

    def _filter_sources(self, urls: list[str]) -> list[str]:
        if not self._config.tracking.enabled:
            self._log_info("Pipeline", "Source tracking disabled", {})
            return urls

        health = self._open_health()
        active, filtered = health.filter_urls(urls)
        self._summary.urls_filtered = len(filtered)
        self._summary.filtered_urls = filtered

        if filtered:
            self._log_warn(
                "Pipeline",
                f"Filtered out {len(filtered)} blacklisted URLs "
                f"(failed {health.max_failures}+ times)",
                {"filtered_urls": filtered},
            )

        if not active:
            raise LoadError(
                code="no_active_urls",
                message="no active URLs to process (all URLs are blacklisted)",
                details={"filtered": len(filtered)},
            )

        return active

    def _open_health(self) -> HealthTracker:
        if self._health is None:
            tracking = self._config.tracking
            try:
                self._health = HealthTracker.open(tracking.data_dir, tracking.max_failures)
            except PersistenceError as e:
                self._log_warn(
                    "Pipeline",
                    f"Failed to load stats: {e.message}",
                    {"data_dir": str(tracking.data_dir)},
                )
                self._health = HealthTracker(tracking.data_dir, tracking.max_failures)
        return self._health

    def _connectivity_checker(self) -> Optional[SelfTest]:
        if not self._config.connectivity_check:
            return None
        if self._self_test is None:
            self._self_test = SelfTest(self._config, logger=self._logger)
        return self._self_test

    async def _fetch(
        self, fetcher: Fetcher, urls: list[str], self_test: Optional[SelfTest]
    ) -> FetchSummary:
        self._log_info(
            "Pipeline",
            f"Processing {len(urls)} active URLs with "
            f"{self._config.fetch.concurrency} parallel fetchers",
            {},
        )
        orchestrator = FetchOrchestrator(
            fetcher,
            concurrency=self._config.fetch.concurrency,
            health=self._health if self._config.tracking.enabled else None,
            listener=self._listener,
            logger=self._logger,
            reconnect=self_test.ensure_connectivity if self_test is not None else None,
        )

        try:
            fetched = await orchestrator.fetch_all(urls)
        except NoDomainsError as e:
            self._summary.errors = list(e.details.get("errors", []))
            raise

        summary = self._summary
        summary.urls_fetched = fetched.urls_fetched
        summary.domains_found = len(fetched.domains)
        summary.duplicates_removed = fetched.duplicates
        summary.errors = [error.message for error in fetched.errors]
        return fetched

    async def _validate(self, fetched: FetchSummary, owned: list) -> set[str]:
        mode = self._config.validation.mode
        summary = self._summary

        if mode is ValidationMode.NONE:
            self._set_state(PipelineState.SKIP_VALIDATION)
            summary.valid_count = len(fetched.domains)
            summary.invalid_count = 0
            return fetched.domains

        self._set_state(PipelineState.VALIDATING)
        validator = self._validator
        if validator is None:
            validator = ReachabilityValidator(self._config.validation, logger=self._logger)
            owned.append(validator)

        orchestrator = ValidationOrchestrator(
            validator,
            concurrency=self._config.validation.concurrency,
            progress_interval=self._config.validation.progress_interval,
            listener=self._listener,
            logger=self._logger,
        )
        result = await orchestrator.validate_all(fetched.domains, mode)
        summary.valid_count = result.valid_count
        summary.invalid_count = result.invalid_count
        return result.valid

    def _record_run(self, fetched: FetchSummary, urls_attempted: int) -> None:
        if self._health is None or not self._config.tracking.enabled:
            return
        summary = self._summary
        self._health.record_run(
            urls_fetched=fetched.urls_fetched,
            urls_failed=urls_attempted - fetched.urls_fetched,
            domains_fetched=sum(fetched.domains_per_url.values()),
            unique_domains=len(fetched.domains),
            duplicates=fetched.duplicates,
            valid_domains=summary.valid_count,
            invalid_domains=summary.invalid_count,
            validation_method=summary.mode.value,
        )

    def _save_health(self) -> None:
        if self._health is None or not self._config.tracking.enabled:
            return
        try:
            self._health.save()
        except PersistenceError as e:
            self._log_warn("Pipeline", f"Failed to save stats: {e.message}", e.details)
        else:
            self._log_info(
                "Pipeline",
                f"Stats saved to {self._health.file_path}",
                {},
            )

    def _set_state(self, state: PipelineState) -> None:
        self._state = state
        self._summary.state = state
        if self._logger:
            self._logger.debug("Pipeline", f"State -> {state.value}", {})

    def _log_info(self, component: str, message: str, data: dict) -> None:
        """Log an info message if logger is available."""
        if self._logger:
            self._logger.info(component, message, data)

    def _log_warn(self, component: str, message: str, data: dict) -> None:
        if self._logger:
            self._logger.warn(component, message, data)
