"""
Fetch Orchestrator for the magpie pipeline.

Fans source URLs out across a fixed pool of fetch workers and merges every
per-source domain set into one global, deduplicated set through a single
collector.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Union

import httpx

from .event_logger import EventLogger
from .exceptions import ConnectivityError, FetchError, NoDomainsError
from .fetcher import Fetcher
from .models import FetchProgress, FetchResult, FetchSummary
from .protocols import ProgressListener, SourceHealth


_DONE = object()


class FetchOrchestrator:
    """
    Concurrent fetch stage.

    Workers pull URLs from a queue and push outcomes to the collector, which
    is the only code that touches the global domain set. The collector also
    notifies the health tracker exactly once per URL.
    """

    DEFAULT_CONCURRENCY = 5

    def __init__(
        self,
        fetcher: Fetcher,
        concurrency: int = DEFAULT_CONCURRENCY,
        health: Optional[SourceHealth] = None,
        listener: Optional[ProgressListener] = None,
        logger: Optional[EventLogger] = None,
        reconnect: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        """
        Initialize the fetch orchestrator.

        Args:
            fetcher: Fetcher used for every URL
            concurrency: Default number of fetch workers
            health: Optional source health tracker to notify
            listener: Optional progress listener
            logger: Optional event logger
            reconnect: Optional coroutine function that returns once the
                       network is reachable again and raises
                       ConnectivityError if it never comes back. When set,
                       a URL that failed with a network error is fetched
                       once more after it returns.
        """
        self._fetcher = fetcher
        self._concurrency = concurrency
        self._health = health
        self._listener = listener
        self._logger = logger
        self._reconnect = reconnect

    async def fetch_all(
        self, urls: list[str], concurrency: Optional[int] = None
    ) -> FetchSummary:
        """
        Fetch every URL and merge the results.

        Args:
            urls: Source URLs to fetch
            concurrency: Worker count override

        Returns:
            FetchSummary with the global domain set, duplicate count and errors

        Raises:
            NoDomainsError: If no source produced a single domain
            ValueError: If the worker count is below 1
        """
        workers_count = self._concurrency if concurrency is None else concurrency
        if workers_count < 1:
            raise ValueError(f"concurrency must be at least 1, got {workers_count}")
        summary = FetchSummary()

        url_queue: asyncio.Queue = asyncio.Queue()
        for url in urls:
            url_queue.put_nowait(url)

        result_queue: asyncio.Queue = asyncio.Queue()

        workers = [
            asyncio.create_task(self._worker(worker_id, url_queue, result_queue))
            for worker_id in range(min(workers_count, max(1, len(urls))))
        ]
        collector = asyncio.create_task(self._collect(result_queue, summary))

        try:
            await asyncio.gather(*workers)
            await result_queue.put(_DONE)
            await collector
        except BaseException:
            for task in (*workers, collector):
                task.cancel()
            await asyncio.gather(*workers, collector, return_exceptions=True)
            raise

        self._log_info(
            "FetchOrchestrator",
            f"Found {len(summary.domains)} unique domains "
            f"(removed {summary.duplicates} duplicates)",
            {
                "urls_fetched": summary.urls_fetched,
                "errors": len(summary.errors),
            },
        )

        if not summary.domains:
            raise NoDomainsError(
                code="no_domains",
                message="No domains found from any source",
                details={
                    "urls_fetched": summary.urls_fetched,
                    "errors": [e.message for e in summary.errors],
                },
            )

        return summary

    async def _worker(
        self,
        worker_id: int,
        url_queue: asyncio.Queue,
        result_queue: asyncio.Queue,
    ) -> None:
        while True:
            try:
                url = url_queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            self._log_info(
                "FetchOrchestrator",
                f"[Worker {worker_id}] Fetching {url}",
                {"worker_id": worker_id, "url": url},
            )

            outcome: Union[FetchResult, FetchError]
            try:
                outcome = await self._fetcher.fetch(url)
            except FetchError as e:
                outcome = e

            if isinstance(outcome, FetchError) and self._should_reconnect(outcome):
                outcome = await self._refetch_after_reconnect(worker_id, outcome)

            await result_queue.put((worker_id, outcome))

    def _should_reconnect(self, error: FetchError) -> bool:
        return self._reconnect is not None and isinstance(error.cause, httpx.TransportError)

    async def _refetch_after_reconnect(
        self, worker_id: int, error: FetchError
    ) -> Union[FetchResult, FetchError]:
        url = error.url
        self._log_info(
            "FetchOrchestrator",
            f"[Worker {worker_id}] Connection error detected, checking internet...",
            {"worker_id": worker_id, "url": url},
        )

        try:
            await self._reconnect()
        except ConnectivityError:
            return FetchError(
                url,
                cause=error.cause,
                attempts=error.attempts,
                message=f"{error.message} (connection lost)",
            )

        self._log_info(
            "FetchOrchestrator",
            f"[Worker {worker_id}] Connection restored, retrying {url}",
            {"worker_id": worker_id, "url": url},
        )

        try:
            return await self._fetcher.fetch(url)
        except FetchError as e:
            return FetchError(
                url,
                cause=e.cause,
                attempts=error.attempts + e.attempts,
                message=f"failed to fetch {url} after reconnection: {e.reason}",
            )

    async def _collect(self, result_queue: asyncio.Queue, summary: FetchSummary) -> None:
        while True:
            item = await result_queue.get()
            if item is _DONE:
                return

            worker_id, outcome = item

            if isinstance(outcome, FetchError):
                summary.errors.append(outcome)
                if self._health is not None:
                    self._health.record_failure(outcome.url, outcome.reason)
                continue

            before = len(summary.domains)
            summary.domains.update(outcome.domains)
            added = len(summary.domains) - before
            summary.duplicates += len(outcome.domains) - added
            summary.urls_fetched += 1
            summary.domains_per_url[outcome.url] = len(outcome.domains)

            if self._health is not None:
                self._health.record_success(outcome.url, len(outcome.domains))

            self._log_info(
                "FetchOrchestrator",
                f"[Worker {worker_id}] Found {len(outcome.domains)} domains from {outcome.url}",
                {"worker_id": worker_id, "url": outcome.url, "attempts": outcome.attempts},
            )

            if self._listener is not None:
                self._listener.on_fetch_progress(
                    FetchProgress(
                        url=outcome.url,
                        worker_id=worker_id,
                        domains_found=len(outcome.domains),
                        total_domains=len(summary.domains),
                    )
                )

    def _log_info(self, component: str, message: str, data: dict) -> None:
        """Log an info message if logger is available."""
        if self._logger:
            self._logger.info(component, message, data)
