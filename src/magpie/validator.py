"""
Reachability validation for aggregated domains.

A domain is DNS-valid when any of its A, AAAA or CNAME lookups answers, and
HTTP-valid when a HEAD request over HTTPS or HTTP returns a status below 500.
Lookup failures never escape this module; callers only see booleans.
"""

import asyncio
import ipaddress
from typing import Iterable, Optional

import dns.asyncresolver
import dns.exception
import httpx

from .config import ValidationConfig
from .enums import ValidationMode
from .event_logger import EventLogger
from .result_cache import ResultCache


# Errors a single DNS lookup may raise; all of them mean "no answer"
DNS_LOOKUP_ERRORS = (dns.exception.DNSException, OSError, ValueError)

# Errors a single HEAD probe may raise; all of them mean "unreachable"
HTTP_PROBE_ERRORS = (httpx.HTTPError, httpx.InvalidURL, OSError)

# Bytes read from a HEAD response before closing it
DRAIN_LIMIT = 512


def split_resolver_address(address: str) -> tuple[str, int]:
    """
    Split ``host[:port]`` into host and port (default 53).

    Accepts ``1.1.1.1``, ``1.1.1.1:53``, ``[2606:4700::1111]:53`` and bare
    IPv6 addresses.
    """
    address = address.strip()
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
        return host, int(port) if port else 53
    if address.count(":") == 1:
        host, port = address.split(":")
        return host, int(port)
    return address, 53


def resolver_address_problem(address: str) -> Optional[str]:
    """Describe why ``address`` is not a usable ``ip[:port]``, or None if it is."""
    try:
        host, port = split_resolver_address(address)
        ipaddress.ip_address(host)
    except ValueError:
        return f"Invalid resolver address: {address}"
    if not 0 < port < 65536:
        return f"Invalid resolver port: {address}"
    return None


async def _drain(response: httpx.Response) -> None:
    """
    Read up to DRAIN_LIMIT bytes of a HEAD response body.

    The status line has already decided reachability, so a body that breaks
    mid-read changes nothing.
    """
    if response.is_stream_consumed:
        return
    drained = 0
    try:
        async for chunk in response.aiter_raw():
            drained += len(chunk)
            if drained >= DRAIN_LIMIT:
                break
    except (httpx.HTTPError, httpx.StreamError):
        pass


class DNSBackend:
    """One nameserver (or the system configuration) behind dnspython."""

    def __init__(self, nameserver: Optional[str] = None) -> None:
        if nameserver:
            host, port = split_resolver_address(nameserver)
            self._resolver = dns.asyncresolver.Resolver(configure=False)
            self._resolver.nameservers = [host]
            self._resolver.port = port
        else:
            self._resolver = dns.asyncresolver.Resolver()
        self.name = nameserver or "system"

    async def has_address(self, domain: str, rdtype: str, lifetime: float) -> bool:
        answer = await self._resolver.resolve(domain, rdtype, lifetime=lifetime)
        return len(answer) > 0

    async def cname_target(self, domain: str, lifetime: float) -> str:
        answer = await self._resolver.resolve(domain, "CNAME", lifetime=lifetime)
        return answer[0].target.to_text()


async def first_true(tasks: Iterable[asyncio.Task], timeout: float) -> bool:
    """
    Wait for the first task that returns True.

    Remaining tasks are cancelled as soon as one succeeds, all fail, or the
    timeout elapses.
    """
    pending = set(tasks)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    try:
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if not task.cancelled() and task.exception() is None and task.result():
                    return True
        return False
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class ReachabilityValidator:
    """
    DNS and HTTP reachability checks with a result cache.

    Resolvers are used in strict round-robin order, starting with the first
    configured one. Only DNS outcomes are cached.
    """

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        backends: Optional[list] = None,
        cache: Optional[ResultCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[EventLogger] = None,
    ) -> None:
        """
        Initialize the validator.

        Args:
            config: Validation settings (timeouts, resolvers, cache)
            backends: DNS backends to rotate through; built from
                      ``config.resolvers`` when omitted
            cache: Result cache; built from config when caching is enabled
            transport: Optional httpx transport for HEAD probes
            logger: Optional event logger
        """
        self._config = config or ValidationConfig()
        self._logger = logger

        if backends is None:
            servers = [s for s in self._config.resolvers if s.strip()]
            backends = [DNSBackend(s) for s in servers] or [DNSBackend()]
        if not backends:
            raise ValueError("At least one DNS backend is required")
        self._backends = list(backends)
        self._next_backend_index = 0

        if cache is None and self._config.enable_cache:
            cache = ResultCache(ttl_seconds=self._config.cache_ttl_seconds)
        self._cache = cache

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "ReachabilityValidator":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def cache(self) -> Optional[ResultCache]:
        return self._cache

    @property
    def backends(self) -> list:
        return list(self._backends)

    def next_backend(self):
        """Return the next DNS backend in round-robin order."""
        backend = self._backends[self._next_backend_index % len(self._backends)]
        self._next_backend_index += 1
        return backend

    async def validate(self, domain: str, mode: ValidationMode) -> bool:
        """Validate a domain according to the given mode."""
        if mode is ValidationMode.NONE:
            return True
        if mode is ValidationMode.HTTP_DNS:
            return await self.validate_full(domain)
        return await self.validate_dns(domain)

    async def validate_dns(self, domain: str) -> bool:
        """
        Check whether a domain has A, AAAA or CNAME records.

        The three lookups run concurrently; the first positive answer wins.

        Args:
            domain: Normalized domain

        Returns:
            True if any lookup answered within the DNS timeout
        """
        if self._cache is not None:
            cached = self._cache.get(domain)
            if cached is not None:
                return cached

        backend = self.next_backend()
        lifetime = self._config.dns_timeout_seconds

        tasks = [
            asyncio.create_task(self._lookup_address(backend, domain, "A", lifetime)),
            asyncio.create_task(self._lookup_address(backend, domain, "AAAA", lifetime)),
            asyncio.create_task(self._lookup_cname(backend, domain, lifetime)),
        ]
        valid = await first_true(tasks, lifetime)

        if self._cache is not None:
            self._cache.put(domain, valid)

        return valid

    async def validate_http(self, domain: str) -> bool:
        """
        Check whether a domain answers HEAD over HTTPS or HTTP.

        Args:
            domain: Normalized domain

        Returns:
            True if either scheme returned a status below 500 in time
        """
        client = self._ensure_client()
        tasks = [
            asyncio.create_task(self._probe(client, f"https://{domain}")),
            asyncio.create_task(self._probe(client, f"http://{domain}")),
        ]
        return await first_true(tasks, self._config.http_timeout_seconds)

    async def validate_full(self, domain: str) -> bool:
        """DNS first; only DNS-valid domains get the HTTP check."""
        if not await self.validate_dns(domain):
            return False
        return await self.validate_http(domain)

    async def _lookup_address(self, backend, domain: str, rdtype: str, lifetime: float) -> bool:
        try:
            return await backend.has_address(domain, rdtype, lifetime)
        except DNS_LOOKUP_ERRORS as e:
            self._log_lookup_failure(domain, rdtype, backend, e)
            return False

    async def _lookup_cname(self, backend, domain: str, lifetime: float) -> bool:
        try:
            target = await backend.cname_target(domain, lifetime)
        except DNS_LOOKUP_ERRORS as e:
            self._log_lookup_failure(domain, "CNAME", backend, e)
            return False
        # A CNAME pointing back at the name itself proves nothing
        return bool(target) and target not in (domain, domain + ".")

    async def _probe(self, client: httpx.AsyncClient, url: str) -> bool:
        try:
            async with client.stream("HEAD", url) as response:
                await _drain(response)
                return response.status_code < 500
        except HTTP_PROBE_ERRORS:
            return False

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=False,  # blocklist targets are not a trust boundary
                timeout=httpx.Timeout(self._config.http_timeout_seconds),
                follow_redirects=True,
                max_redirects=self._config.http_max_redirects,
                headers={"User-Agent": "Magpie/1.0"},
                transport=self._transport,
            )
        return self._client

    def _log_lookup_failure(self, domain: str, rdtype: str, backend, error: Exception) -> None:
        if self._logger:
            self._logger.debug(
                "Validator",
                f"{rdtype} lookup failed for {domain}",
                {
                    "resolver": getattr(backend, "name", "?"),
                    "error_type": type(error).__name__,
                },
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
