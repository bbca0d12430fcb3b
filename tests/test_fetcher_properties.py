"""
Tests for the Fetcher module.

All HTTP traffic goes through httpx.MockTransport; retry sleeps are faked so
backoff never slows the suite down.
"""

import asyncio
from io import StringIO
from typing import Callable

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from magpie.config import FetchConfig, RetryConfig
from magpie.event_logger import EventLogger
from magpie.exceptions import FetchError, SourceResponseError
from magpie.fetcher import Fetcher
from magpie.retry_manager import RetryManager


SOURCE_URL = "https://lists.example.test/hosts.txt"


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_fetcher(
    handler: Callable[[httpx.Request], httpx.Response],
    attempts: int = 3,
    config: FetchConfig = None,
    sleep: FakeSleep = None,
) -> Fetcher:
    retry = RetryManager(
        RetryConfig(attempts=attempts),
        sleep=sleep or FakeSleep(),
        rand=lambda: 0.0,
    )
    return Fetcher(
        config=config or FetchConfig(),
        retry_manager=retry,
        transport=httpx.MockTransport(handler),
    )


def fetch(fetcher: Fetcher, url: str = SOURCE_URL):
    async def run():
        async with fetcher:
            return await fetcher.fetch(url)

    return asyncio.run(run())


class TestFetchParsing:
    """Bodies are split into lines, filtered and deduplicated per source."""

    def test_mixed_formats(self) -> None:
        body = (
            "# hosts file\n"
            "! adblock header\n"
            "; semicolon comment\n"
            "\n"
            "example.com\n"
            "0.0.0.0 ads.example.com\n"
            "||tracker.example.net^\n"
            "example.com\n"
            "not a domain\n"
        )
        fetcher = make_fetcher(lambda request: httpx.Response(200, text=body))

        result = fetch(fetcher)

        assert result.url == SOURCE_URL
        assert result.domains == {"example.com", "ads.example.com", "tracker.example.net"}
        assert result.attempts == 1
        assert result.lines_read == 9

    def test_crlf_and_missing_final_newline(self) -> None:
        body = b"example.com\r\nads.example.org\r\nlast.example.net"
        fetcher = make_fetcher(lambda request: httpx.Response(200, content=body))

        result = fetch(fetcher)

        assert result.domains == {"example.com", "ads.example.org", "last.example.net"}

    def test_invalid_utf8_is_replaced_not_fatal(self) -> None:
        body = b"example.com\n\xff\xfe.bad\nother.example.com\n"
        fetcher = make_fetcher(lambda request: httpx.Response(200, content=body))

        result = fetch(fetcher)

        assert result.domains == {"example.com", "other.example.com"}

    def test_sends_identifying_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="example.com\n")

        fetch(make_fetcher(handler))

        assert seen[0].headers["User-Agent"] == "Magpie/1.0"
        assert seen[0].headers["Accept"] == "text/plain, */*"

    def test_follows_redirects(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old.txt":
                return httpx.Response(
                    301, headers={"Location": "https://lists.example.test/new.txt"}
                )
            return httpx.Response(200, text="moved.example.com\n")

        result = fetch(make_fetcher(handler), "https://lists.example.test/old.txt")

        assert result.domains == {"moved.example.com"}

    @given(
        domains=st.lists(
            st.from_regex(r"[a-z]{1,10}\.(com|net|org)", fullmatch=True),
            min_size=0,
            max_size=40,
        )
    )
    @settings(max_examples=50, deadline=None)
    def test_per_source_dedup(self, domains: list[str]) -> None:
        """
        Property: a source's result is exactly the set of its entries.

        *For any* list of domains (with repeats), the fetch result holds each
        once.
        """
        body = "\n".join(domains) + "\n"
        fetcher = make_fetcher(lambda request: httpx.Response(200, text=body))

        result = fetch(fetcher)

        assert result.domains == set(domains)


class TestFetchFailures:
    """Failed attempts are retried and end in FetchError."""

    def test_http_404_retried_exactly_n_times(self) -> None:
        calls = 0
        sleep = FakeSleep()

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(404)

        fetcher = make_fetcher(handler, attempts=3, sleep=sleep)

        with pytest.raises(FetchError) as exc_info:
            fetch(fetcher)

        error = exc_info.value
        assert calls == 3
        assert error.attempts == 3
        assert error.url == SOURCE_URL
        assert isinstance(error.cause, SourceResponseError)
        assert "HTTP 404" in error.message
        assert "failed after 3 attempts" in error.message
        assert sleep.delays == [1.0, 2.0]

    def test_recovers_on_later_attempt(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                return httpx.Response(503)
            return httpx.Response(200, text="example.com\n")

        result = fetch(make_fetcher(handler, attempts=3))

        assert result.attempts == 3
        assert result.domains == {"example.com"}

    def test_transport_error_becomes_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError) as exc_info:
            fetch(make_fetcher(handler, attempts=2))

        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        assert exc_info.value.attempts == 2

    def test_slow_source_times_out_with_readable_reason(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200, text="example.com\n")

        fetcher = make_fetcher(handler, attempts=2, config=FetchConfig(timeout_seconds=0.05))

        with pytest.raises(FetchError) as exc_info:
            fetch(fetcher)

        error = exc_info.value
        assert error.cause.code == "timeout"
        assert error.reason == "timed out after 0.05s"
        assert error.message.endswith("failed after 2 attempts: timed out after 0.05s")

    def test_overlong_line_fails_the_attempt(self) -> None:
        body = "a" * 200 + ".com\nexample.com\n"
        fetcher = make_fetcher(
            lambda request: httpx.Response(200, text=body),
            attempts=1,
            config=FetchConfig(max_line_bytes=64),
        )

        with pytest.raises(FetchError) as exc_info:
            fetch(fetcher)

        cause = exc_info.value.cause
        assert isinstance(cause, SourceResponseError)
        assert cause.code == "line_too_long"

    def test_line_at_the_limit_is_accepted(self) -> None:
        domain = "a" * 60 + ".com"
        fetcher = make_fetcher(
            lambda request: httpx.Response(200, text=domain + "\n"),
            config=FetchConfig(max_line_bytes=len(domain)),
        )

        result = fetch(fetcher)

        assert result.domains == {domain}


class AnnouncingBody(httpx.AsyncByteStream):
    """Whole body in one chunk; sets ``started`` just before handing it over."""

    def __init__(self, body: bytes, started: asyncio.Event) -> None:
        self._body = body
        self._started = started

    async def __aiter__(self):
        self._started.set()
        yield self._body

    async def aclose(self) -> None:
        pass


class TestCancellation:
    """A cancelled fetch stops even while scanning already-buffered lines."""

    def test_cancel_lands_during_scan(self) -> None:
        body = "".join(f"host{i}.example.com\n" for i in range(5000)).encode()
        logger = EventLogger(output_stream=StringIO(), level="debug")

        async def scenario() -> asyncio.Task:
            started = asyncio.Event()
            fetcher = Fetcher(
                config=FetchConfig(cancel_check_interval=10),
                retry_manager=RetryManager(RetryConfig(attempts=3), sleep=FakeSleep()),
                transport=httpx.MockTransport(
                    lambda request: httpx.Response(200, stream=AnnouncingBody(body, started))
                ),
                logger=logger,
            )
            async with fetcher:
                task = asyncio.create_task(fetcher.fetch(SOURCE_URL))
                await started.wait()
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task
            return task

        task = asyncio.run(scenario())

        assert task.cancelled()
        assert not any(entry.message.startswith("Parsed") for entry in logger.entries)
