"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Target URL resolution.

Parses the caller-supplied ``url`` parameter into a TargetSpec. Only https
targets are accepted. Path and query are kept exactly as supplied. ASCII
hostnames keep their case; internationalized names are converted to their
IDNA A-label form, which is then used for classification, the Host header,
SNI and the connection target.
"""

import ipaddress
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from dynserv.exceptions import InvalidURLError, UnsupportedSchemeError
from dynserv.gateway.classifier import HostVerdict, classify_host


ALLOWED_SCHEME = "https"
DEFAULT_PORT = 443
MAX_PORT = 65535

# Characters that can never appear in a hostname (besides whitespace and
# control characters).
FORBIDDEN_HOST_CHARS = frozenset("\\<>^|%[]\"`{}")


@dataclass(frozen=True)
class TargetSpec:
    """
    Resolved upstream target.

    Attributes:
        scheme: Always "https"
        hostname: ASCII host as supplied (case preserved, IPv6 literals keep
            brackets) or the A-label form of an internationalized name
        port: Explicit port or 443
        path: Raw path, possibly empty
        query: Raw query string without the leading "?", possibly empty
    """
    scheme: str
    hostname: str
    port: int
    path: str
    query: str

    @property
    def path_and_query(self) -> str:
        """Origin-form request target; an empty path becomes "/"."""
        path = self.path
        if self.query:
            path = f"{path}?{self.query}"
        return path or "/"

    @property
    def authority(self) -> str:
        return f"{self.hostname}:{self.port}"

    def classify(self) -> HostVerdict:
        return classify_host(self.hostname)


def _split_host_port(hostport: str):
    """Split ``host[:port]`` where host may be a bracketed IPv6 literal."""
    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1:
            raise InvalidURLError("Invalid IPv6 URL")
        host, rest = hostport[:end + 1], hostport[end + 1:]
        if rest and not rest.startswith(":"):
            raise InvalidURLError(f"Invalid character after IPv6 host: {rest!r}")
        return host, rest[1:] if rest else ""

    host, sep, port = hostport.rpartition(":")
    if not sep:
        return hostport, ""
    if ":" in host:
        raise InvalidURLError("IPv6 hosts must be enclosed in brackets")
    return host, port


def _parse_port(port: str) -> int:
    if not port:
        return DEFAULT_PORT
    if not port.isascii() or not port.isdigit():
        raise InvalidURLError(f"Invalid port: {port!r}")
    value = int(port)
    if value > MAX_PORT:
        raise InvalidURLError(f"Port out of range 0-{MAX_PORT}: {value}")
    return value


def _normalize_hostname(hostname: str) -> str:
    """
    Validate a hostname and return the form used on the wire.

    Bracketed IPv6 literals must parse as IPv6 addresses. Other hosts may
    not contain whitespace, control characters or URL delimiters, and may
    not have empty labels (a single trailing dot is allowed). Non-ASCII
    names are IDNA-encoded.

    Raises:
        InvalidURLError: If the hostname is not valid
    """
    if hostname.startswith("["):
        try:
            ipaddress.IPv6Address(hostname[1:-1])
        except ValueError:
            raise InvalidURLError(f"Invalid IPv6 address: {hostname!r}")
        return hostname

    for char in hostname:
        if char.isspace() or not char.isprintable() or char in FORBIDDEN_HOST_CHARS:
            raise InvalidURLError(f"Invalid character in hostname: {hostname!r}")

    labels = hostname[:-1].split(".") if hostname.endswith(".") else hostname.split(".")
    if any(not label for label in labels):
        raise InvalidURLError(f"Empty label in hostname: {hostname!r}")

    if hostname.isascii():
        return hostname

    try:
        return httpx.URL(f"https://{hostname}/").raw_host.decode("ascii")
    except httpx.InvalidURL as e:
        raise InvalidURLError(str(e))


def resolve_target(raw_url: str) -> TargetSpec:
    """
    Parse and validate a target URL.

    Args:
        raw_url: Value of the ``url`` query parameter

    Returns:
        TargetSpec for the upstream

    Raises:
        InvalidURLError: If the URL is empty, relative or malformed
        UnsupportedSchemeError: If the scheme is anything but https
    """
    if not raw_url:
        raise InvalidURLError("Empty URL")

    try:
        parts = urlsplit(raw_url)
    except ValueError as e:
        raise InvalidURLError(str(e))

    if not parts.scheme:
        raise InvalidURLError(f"Invalid URL: {raw_url!r} is not an absolute URL")

    if parts.scheme.lower() != ALLOWED_SCHEME:
        raise UnsupportedSchemeError(parts.scheme)

    # userinfo is never forwarded
    hostport = parts.netloc.rpartition("@")[2]
    hostname, port = _split_host_port(hostport)
    if not hostname:
        raise InvalidURLError(error="Invalid URL: missing hostname")

    return TargetSpec(
        scheme=ALLOWED_SCHEME,
        hostname=_normalize_hostname(hostname),
        port=_parse_port(port),
        path=parts.path,
        query=parts.query,
    )
