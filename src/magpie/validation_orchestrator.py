"""
Validation Orchestrator for the magpie pipeline.

Runs reachability checks over the global domain set with a fixed pool of
workers reading from a bounded queue.
"""

import asyncio
import time
from typing import Callable, Iterable, Optional

from .enums import ValidationMode
from .event_logger import EventLogger
from .models import ValidationProgress, ValidationSummary
from .protocols import ProgressListener
from .validator import ReachabilityValidator


_STOP = object()


class _Progress:
    """Running totals shared by the workers, only read for progress events."""

    def __init__(self, total: int, started: float) -> None:
        self.total = total
        self.started = started
        self.processed = 0
        self.valid = 0


class ValidationOrchestrator:
    """
    Concurrent validation stage.

    Each worker keeps its own valid list and counters and merges them into
    the summary once, when the queue is exhausted.
    """

    DEFAULT_CONCURRENCY = 100
    DEFAULT_PROGRESS_INTERVAL = 10000

    def __init__(
        self,
        validator: ReachabilityValidator,
        concurrency: int = DEFAULT_CONCURRENCY,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        listener: Optional[ProgressListener] = None,
        logger: Optional[EventLogger] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._validator = validator
        self._concurrency = concurrency
        self._progress_interval = max(1, progress_interval)
        self._listener = listener
        self._logger = logger
        self._clock = clock or time.monotonic

    async def validate_all(
        self,
        domains: Iterable[str],
        mode: ValidationMode,
        concurrency: Optional[int] = None,
    ) -> ValidationSummary:
        """
        Validate every domain under the given mode.

        Args:
            domains: Deduplicated domains to check
            mode: NONE passes everything through without network access
            concurrency: Worker count override

        Returns:
            ValidationSummary holding the valid subset and counts

        Raises:
            ValueError: If validation is needed and the worker count is below 1
        """
        domains = list(domains)

        if mode is ValidationMode.NONE:
            self._log_info(
                "ValidationOrchestrator",
                "Skipping validation",
                {"domains": len(domains)},
            )
            return ValidationSummary(
                valid=set(domains),
                valid_count=len(domains),
                invalid_count=0,
                mode=mode,
            )

        workers_count = self._concurrency if concurrency is None else concurrency
        if workers_count < 1:
            raise ValueError(f"concurrency must be at least 1, got {workers_count}")
        summary = ValidationSummary(valid=set(), valid_count=0, invalid_count=0, mode=mode)
        progress = _Progress(total=len(domains), started=self._clock())

        self._log_info(
            "ValidationOrchestrator",
            f"Validating {len(domains)} domains with {workers_count} workers",
            {"mode": mode.value, "workers": workers_count},
        )

        queue: asyncio.Queue = asyncio.Queue(maxsize=2 * workers_count)
        workers = [
            asyncio.create_task(self._worker(queue, mode, summary, progress))
            for _ in range(workers_count)
        ]

        try:
            for domain in domains:
                await queue.put(domain)
            for _ in workers:
                await queue.put(_STOP)
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        self._emit_progress(progress)
        self._log_info(
            "ValidationOrchestrator",
            f"Validation complete: {summary.valid_count} valid, "
            f"{summary.invalid_count} invalid",
            {"mode": mode.value},
        )
        return summary

    async def _worker(
        self,
        queue: asyncio.Queue,
        mode: ValidationMode,
        summary: ValidationSummary,
        progress: _Progress,
    ) -> None:
        valid: list[str] = []
        invalid_count = 0

        while True:
            domain = await queue.get()
            if domain is _STOP:
                break

            if await self._validator.validate(domain, mode):
                valid.append(domain)
                progress.valid += 1
            else:
                invalid_count += 1

            progress.processed += 1
            if progress.processed % self._progress_interval == 0:
                self._emit_progress(progress)

        summary.valid.update(valid)
        summary.valid_count += len(valid)
        summary.invalid_count += invalid_count

    def _emit_progress(self, progress: _Progress) -> None:
        if self._listener is None:
            return
        elapsed = self._clock() - progress.started
        rate = progress.processed / elapsed if elapsed > 0 else 0.0
        self._listener.on_validation_progress(
            ValidationProgress(
                processed=progress.processed,
                valid=progress.valid,
                invalid=progress.processed - progress.valid,
                total=progress.total,
                rate_per_second=rate,
            )
        )

    def _log_info(self, component: str, message: str, data: dict) -> None:
        """Log an info message if logger is available."""
        if self._logger:
            self._logger.info(component, message, data)
