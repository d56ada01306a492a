"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Dynserv - Dynamic-upstream reverse-proxy gateway

Dynserv authenticates a caller, validates and classifies a caller-supplied
target URL, opens a TLS connection to that target on demand and relays the
request/response pair.
"""

from dynserv._version import __version__

__all__ = ["__version__"]
