"""
Fetcher for blocklist sources.

Downloads one source URL with retries, streams the body line by line
through the domain parser, and returns the deduplicated domain set
for that source.
"""

import asyncio
from typing import AsyncIterator, Optional

import httpx

from .config import FetchConfig, RetryConfig
from .domain_parser import extract_domain
from .event_logger import EventLogger
from .exceptions import FetchError, SourceResponseError
from .models import FetchResult
from .retry_manager import RetryManager


# Lines starting with these are comments in hosts, AdBlock and dnsmasq lists
COMMENT_PREFIXES = ("#", "!", ";")


class Fetcher:
    """
    Async blocklist fetcher.

    Each call to :meth:`fetch` makes up to ``RetryConfig.attempts`` GET
    requests. Every attempt is bounded by ``FetchConfig.timeout_seconds``
    end to end, including body streaming.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        retry_manager: Optional[RetryManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[EventLogger] = None,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            config: HTTP settings (timeout, redirects, line cap)
            retry_config: Retry settings used when no retry_manager is given
            retry_manager: Preconfigured retry manager (tests inject fake sleeps)
            transport: Optional httpx transport, e.g. httpx.MockTransport
            logger: Optional event logger
        """
        self._config = config or FetchConfig()
        self._retry = retry_manager or RetryManager(retry_config or RetryConfig())
        self._transport = transport
        self._logger = logger
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "Fetcher":
        """Async context manager entry."""
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                follow_redirects=True,
                max_redirects=self._config.max_redirects,
                headers={
                    "User-Agent": self._config.user_agent,
                    "Accept": "text/plain, */*",
                },
                transport=self._transport,
            )
        return self._client

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a source and parse it into a domain set.

        Args:
            url: Source URL (http or https)

        Returns:
            FetchResult with the unique valid domains of this source

        Raises:
            FetchError: If every attempt failed
        """
        self._ensure_client()

        async def attempt() -> tuple[set[str], int]:
            timeout = self._config.timeout_seconds
            try:
                return await asyncio.wait_for(self._fetch_attempt(url), timeout=timeout)
            except asyncio.TimeoutError:
                raise SourceResponseError(
                    code="timeout",
                    message=f"timed out after {timeout:g}s",
                    details={"url": url},
                ) from None

        result = await self._retry.execute_with_retry(attempt)

        if not result.success:
            error = FetchError(url, cause=result.last_error, attempts=result.attempts)
            if self._logger:
                self._logger.log_error(
                    "Fetcher",
                    error.message,
                    error=result.last_error,
                    request_url=url,
                    additional_data={"attempts": result.attempts},
                )
            raise error

        domains, lines_read = result.result
        return FetchResult(
            url=url,
            domains=domains,
            attempts=result.attempts,
            lines_read=lines_read,
        )

    async def _fetch_attempt(self, url: str) -> tuple[set[str], int]:
        """Run a single GET and parse the streamed body."""
        client = self._ensure_client()
        domains: set[str] = set()
        line_num = 0

        async with client.stream("GET", url) as response:
            if not response.is_success:
                raise SourceResponseError(
                    code="http_status",
                    message=f"HTTP {response.status_code}: {response.reason_phrase}",
                    details={"url": url, "status_code": response.status_code},
                )

            async for line in self._iter_lines(response, url):
                line_num += 1

                # Yield so a pending cancellation lands on buffered input
                if line_num % self._config.cancel_check_interval == 0:
                    await asyncio.sleep(0)

                line = line.strip()
                if not line or line.startswith(COMMENT_PREFIXES):
                    continue

                domain = extract_domain(line)
                if domain:
                    domains.add(domain)

        if self._logger:
            self._logger.debug(
                "Fetcher",
                f"Parsed {len(domains)} domains from {url}",
                {"url": url, "lines": line_num},
            )

        return domains, line_num

    async def _iter_lines(self, response: httpx.Response, url: str) -> AsyncIterator[str]:
        """
        Split a streamed body into lines without holding the whole document.

        Raises:
            SourceResponseError: If a single line exceeds ``max_line_bytes``
        """
        limit = self._config.max_line_bytes
        buffer = bytearray()
        lines_seen = 0

        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            start = 0
            while True:
                newline = buffer.find(b"\n", start)
                if newline == -1:
                    break
                if newline - start > limit:
                    raise self._line_too_long(url, lines_seen + 1)
                lines_seen += 1
                yield _decode_line(buffer[start:newline])
                start = newline + 1
            del buffer[:start]
            if len(buffer) > limit:
                raise self._line_too_long(url, lines_seen + 1)

        if buffer:
            yield _decode_line(buffer)

    def _line_too_long(self, url: str, line_num: int) -> SourceResponseError:
        return SourceResponseError(
            code="line_too_long",
            message=(
                f"error reading response (line {line_num}): "
                f"line exceeds {self._config.max_line_bytes} bytes"
            ),
            details={"url": url, "line": line_num},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


def _decode_line(raw: bytes) -> str:
    return bytes(raw).rstrip(b"\r").decode("utf-8", errors="replace")
