"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Dynamic upstream identity and TLS backend.

Each request derives a logical backend identity from (hostname, port) and
registers a dynamic TLS backend for it. Nothing is cached between requests:
registering the same identity twice yields two equal, independent backends.

The backend name replaces every character outside [A-Za-z0-9] with "_".
Hosts that differ only in such characters share a name (``a.b`` and ``a_b``
both become ``dyn_a_b_443``). The name is used for logging and as a label
only; the connection target always carries the real hostname.
"""

import re
import ssl
from dataclasses import dataclass
from typing import Optional

import httpx

from dynserv.logging_config import get_logger

logger = get_logger(__name__)


BACKEND_NAME_PREFIX = "dyn_"
_NAME_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class UpstreamPolicy:
    """
    Fixed TLS and timeout policy applied to every dynamic backend.

    Attributes:
        tls_min_version: Lowest TLS version offered
        tls_max_version: Highest TLS version offered
        connect_timeout: Seconds allowed for TCP connect plus TLS handshake
        first_byte_timeout: Seconds allowed until the first response byte
        between_bytes_timeout: Seconds allowed between two reads of the body
    """
    tls_min_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2
    tls_max_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_3
    connect_timeout: float = 10.0
    first_byte_timeout: float = 30.0
    between_bytes_timeout: float = 30.0


UPSTREAM_POLICY = UpstreamPolicy()


@dataclass(frozen=True)
class UpstreamIdentity:
    """
    Logical identity of a dynamic upstream.

    Attributes:
        name: Sanitized backend name, e.g. ``dyn_example_com_443``
        target: Connection target ``hostname:port``
    """
    name: str
    target: str


def sanitize_backend_name(hostname: str) -> str:
    """Replace every character outside [A-Za-z0-9] with an underscore."""
    return _NAME_UNSAFE_CHARS.sub("_", hostname)


def derive_upstream_identity(hostname: str, port: int) -> UpstreamIdentity:
    """
    Derive the backend identity for a (hostname, port) pair.

    Args:
        hostname: Target hostname as supplied by the caller
        port: Target port

    Returns:
        UpstreamIdentity; equal inputs always give equal identities
    """
    return UpstreamIdentity(
        name=f"{BACKEND_NAME_PREFIX}{sanitize_backend_name(hostname)}_{port}",
        target=f"{hostname}:{port}",
    )


@dataclass(frozen=True)
class DynamicBackend:
    """
    A TLS backend registered for one request.

    Attributes:
        name: Backend name (from UpstreamIdentity)
        target: Connection target ``hostname:port``
        host_override: Value sent in the Host header
        sni_hostname: Server name sent in the TLS ClientHello and checked
            against the certificate
        policy: TLS and timeout policy
    """
    name: str
    target: str
    host_override: str
    sni_hostname: str
    policy: UpstreamPolicy = UPSTREAM_POLICY

    @property
    def base_url(self) -> str:
        return f"https://{self.target}"

    def ssl_context(self) -> ssl.SSLContext:
        """Build a verifying client context pinned to the policy's TLS versions."""
        context = ssl.create_default_context()
        context.minimum_version = self.policy.tls_min_version
        context.maximum_version = self.policy.tls_max_version
        return context

    def timeout(self) -> httpx.Timeout:
        """
        Build the httpx timeout for this backend.

        httpx applies the read timeout to every socket read, which bounds both
        the wait for the first byte and the gaps between later bytes.
        """
        return httpx.Timeout(
            connect=self.policy.connect_timeout,
            read=max(self.policy.first_byte_timeout, self.policy.between_bytes_timeout),
            write=self.policy.between_bytes_timeout,
            pool=self.policy.connect_timeout,
        )

    def open_client(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
        """
        Open an HTTP client bound to this backend.

        The client is owned by a single request and must be closed by it.
        Redirects are relayed to the caller, never followed, and environment
        proxy settings are ignored.

        Args:
            transport: Optional transport replacing the network (tests)
        """
        return httpx.AsyncClient(
            verify=self.ssl_context(),
            timeout=self.timeout(),
            follow_redirects=False,
            trust_env=False,
            transport=transport,
        )


def register_dynamic_backend(identity: UpstreamIdentity, hostname: str) -> DynamicBackend:
    """
    Register a dynamic TLS backend for an upstream identity.

    Registration has no side effects, so calling it twice for the same
    identity is safe and returns equal backends.

    Args:
        identity: Derived upstream identity
        hostname: Hostname used for Host override and SNI

    Returns:
        DynamicBackend ready to open a client
    """
    backend = DynamicBackend(
        name=identity.name,
        target=identity.target,
        host_override=hostname,
        sni_hostname=hostname,
    )
    logger.debug(
        "dynamic_backend_registered",
        backend=backend.name,
        target=backend.target,
        tls_min_version=backend.policy.tls_min_version.name,
        tls_max_version=backend.policy.tls_max_version.name,
    )
    return backend
