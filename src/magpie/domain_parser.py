"""
Blocklist line parsing and domain normalization.

Turns one line of a blocklist (plain domain, hosts file entry, AdBlock rule,
raw URL, wildcard) into a normalized ASCII domain, and re-checks the result
against RFC 1035 structural rules.

All functions here are pure and keep no state, so fetch workers may call
them concurrently.
"""

import re
from urllib.parse import urlparse

import idna


MAX_DOMAIN_LENGTH = 253  # RFC 1035
MAX_LABEL_LENGTH = 63  # RFC 1035
MIN_DOMAIN_LENGTH = 3  # e.g. "a.b"

# Hosts-file prefixes that route a name to nowhere
NULL_ROUTE_PREFIXES = ("0.0.0.0 ", "127.0.0.1 ")

DOMAIN_PATTERN = re.compile(
    r"([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}"
)
LABEL_PATTERN = re.compile(r"[a-zA-Z0-9-]+")


def parse_domain(line: str) -> str:
    """
    Extract a normalized domain from a single blocklist line.

    Recognized shapes, first match wins:
    ``||domain^`` AdBlock rules, ``@@||`` exceptions (rejected), hosts-file
    null routes, any IP-looking token followed by a domain, full URLs, and
    finally the bare line itself.

    Args:
        line: One raw line from a fetched document

    Returns:
        The normalized domain, or an empty string if nothing usable was found
    """
    line = _strip_inline_comment(line).strip()
    if not line:
        return ""

    if line.startswith("||"):
        candidate = line[2:]
        caret = candidate.find("^")
        if caret != -1:
            candidate = candidate[:caret]
        return clean_domain(candidate)

    if line.startswith("@@||"):
        return ""

    fields = line.split()

    if line.startswith(NULL_ROUTE_PREFIXES) or line.startswith("::"):
        if len(fields) >= 2:
            return clean_domain(fields[1])

    if len(fields) >= 2:
        first = fields[0]
        if first.count(".") == 3 or ":" in first:
            return clean_domain(fields[1])

    if line.startswith(("http://", "https://")):
        host = _url_host(line)
        if host:
            return clean_domain(host)

    return clean_domain(line)


def clean_domain(candidate: str) -> str:
    """
    Normalize an extracted domain candidate.

    Lowercases, removes scheme and ``www.`` prefixes, trailing dots, paths,
    query strings, ports and wildcard markers. Internationalized names are
    converted to their IDNA A-label form.

    Args:
        candidate: Domain-like string taken out of a blocklist line

    Returns:
        The normalized domain, or an empty string if it cannot be a domain
    """
    domain = candidate.strip().lower()

    domain = _trim_prefix(domain, "http://")
    domain = _trim_prefix(domain, "https://")
    domain = _trim_prefix(domain, "www.")

    if domain.endswith("."):
        domain = domain[:-1]

    for separator in ("/", "?", ":"):
        idx = domain.find(separator)
        if idx != -1:
            domain = domain[:idx]

    domain = _trim_prefix(domain, "*.")
    domain = _trim_prefix(domain, ".")
    domain = domain.strip()

    if domain and not domain.isascii():
        try:
            domain = idna.encode(domain, uts46=True).decode("ascii")
        except idna.IDNAError:
            return ""

    if not domain or "." not in domain:
        return ""

    return domain


def is_valid_domain(domain: str) -> bool:
    """
    Check a domain against RFC structural constraints.

    This is a second gate independent of :func:`parse_domain`; a string can
    survive extraction and still be rejected here.

    Args:
        domain: Domain string to check

    Returns:
        True if the domain has valid length, labels, charset and TLD
    """
    if not domain:
        return False

    if len(domain) < MIN_DOMAIN_LENGTH or len(domain) > MAX_DOMAIN_LENGTH:
        return False

    if "." not in domain:
        return False

    if domain[0] in "-." or domain[-1] in "-.":
        return False

    labels = domain.split(".")
    if len(labels) < 2:
        return False

    for label in labels:
        if not label or len(label) > MAX_LABEL_LENGTH:
            return False
        if label.startswith("-") or label.endswith("-"):
            return False
        if not LABEL_PATTERN.fullmatch(label):
            return False

    if len(labels[-1]) < 2:
        return False

    return DOMAIN_PATTERN.fullmatch(domain) is not None


def extract_domain(line: str) -> str:
    """Parse a line and return the domain only if it also passes validation."""
    domain = parse_domain(line)
    if domain and is_valid_domain(domain):
        return domain
    return ""


def _strip_inline_comment(line: str) -> str:
    for marker in ("#", ";"):
        idx = line.find(marker)
        if idx != -1:
            line = line[:idx]
    return line


def _trim_prefix(value: str, prefix: str) -> str:
    if value.startswith(prefix):
        return value[len(prefix):]
    return value


def _url_host(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError:
        return ""
    return parsed.hostname or ""
