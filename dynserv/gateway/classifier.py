"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Host classification for SSRF protection.

The gateway, not the caller, opens the outbound connection, so a target that
points at loopback, RFC 1918 space, link-local addresses (cloud metadata
endpoints) or internal DNS names must be refused before any network action.

Classification is a pure function over the hostname string. Rules are kept
in an ordered table; the first matching rule decides. All comparisons are
case-insensitive.

Rules, in order:
- localhost: ``localhost`` and ``localhost.localdomain``.
- ipv6_loopback: ``::1`` with or without brackets.
- private_ipv4: dotted quads in loopback, RFC 1918, link-local and 0/8
  space, the broadcast address, and any quad with an octet above 255.
- internal_prefix: names starting with ``internal.``, ``intranet.``,
  ``private.``, ``corp.`` or ``lan.``. The bare labels ``internal``,
  ``intranet``, ``private``, ``corp`` and ``lan`` are blocked too.
- internal_suffix: names ending in ``.internal``, ``.local`` or
  ``.localhost``. The bare labels ``internal``, ``local`` and
  ``localhost`` are blocked too.

Known gaps (not handled here):
- IPv6 ranges other than the ``::1`` literal (ULA fc00::/7, link-local
  fe80::/10, IPv4-mapped ::ffff:0:0/96).
- Integer, octal and hex IPv4 spellings (``2130706433``, ``0x7f.1``).
- Fully qualified names with a trailing dot (``localhost.``).
- Public names that resolve to private addresses (no DNS lookup is made).
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple


LOCALHOST_NAMES = frozenset({"localhost", "localhost.localdomain"})
IPV6_LOOPBACK_NAMES = frozenset({"::1", "[::1]"})
INTERNAL_PREFIXES = ("internal.", "intranet.", "private.", "corp.", "lan.")
INTERNAL_SUFFIXES = (".internal", ".local", ".localhost")

_DOTTED_QUAD = re.compile(r"^(\d+)\.(\d+)\.(\d+)\.(\d+)$")


@dataclass(frozen=True)
class HostVerdict:
    """
    Result of classifying a hostname.

    Attributes:
        blocked: True if the host is private/internal and must not be contacted
        rule: Name of the rule that blocked the host (None when allowed)
    """
    blocked: bool
    rule: Optional[str] = None


def _is_localhost(host: str) -> bool:
    return host in LOCALHOST_NAMES


def _is_ipv6_loopback(host: str) -> bool:
    return host in IPV6_LOOPBACK_NAMES


def _is_private_ipv4(host: str) -> bool:
    """
    Check a dotted-quad literal against private and reserved IPv4 ranges.

    Malformed quads (any octet above 255) are blocked.
    """
    match = _DOTTED_QUAD.match(host)
    if match is None:
        return False

    octets = [int(group) for group in match.groups()]
    if any(octet > 255 for octet in octets):
        return True

    a, b = octets[0], octets[1]
    return (
        a == 127                                  # loopback 127.0.0.0/8
        or a == 10                                # private 10.0.0.0/8
        or (a == 172 and 16 <= b <= 31)           # private 172.16.0.0/12
        or (a == 192 and b == 168)                # private 192.168.0.0/16
        or (a == 169 and b == 254)                # link-local 169.254.0.0/16
        or a == 0                                 # current network 0.0.0.0/8
        or octets == [255, 255, 255, 255]         # limited broadcast
    )


def _has_internal_prefix(host: str) -> bool:
    return any(
        host.startswith(prefix) or host == prefix[:-1]
        for prefix in INTERNAL_PREFIXES
    )


def _has_internal_suffix(host: str) -> bool:
    return any(
        host.endswith(suffix) or host == suffix[1:]
        for suffix in INTERNAL_SUFFIXES
    )


# Ordered (rule name, predicate) pairs. Predicates receive the lowercased host.
HOST_RULES: List[Tuple[str, Callable[[str], bool]]] = [
    ("localhost", _is_localhost),
    ("ipv6_loopback", _is_ipv6_loopback),
    ("private_ipv4", _is_private_ipv4),
    ("internal_prefix", _has_internal_prefix),
    ("internal_suffix", _has_internal_suffix),
]


def classify_host(hostname: str) -> HostVerdict:
    """
    Classify a hostname as private/internal (blocked) or public (allowed).

    Args:
        hostname: Hostname exactly as it appears in the target URL

    Returns:
        HostVerdict naming the first rule that matched, if any
    """
    host = hostname.lower()
    for rule_name, predicate in HOST_RULES:
        if predicate(host):
            return HostVerdict(blocked=True, rule=rule_name)
    return HostVerdict(blocked=False)


def is_private_host(hostname: str) -> bool:
    """Return True if the hostname must not be contacted."""
    return classify_host(hostname).blocked
