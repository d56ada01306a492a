"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Version information for Dynserv.

A source checkout reads the VERSION file at the repository root; an
installed distribution falls back to its package metadata.
"""

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

VERSION_FILE = Path(__file__).parent.parent / "VERSION"


def get_version() -> str:
    """
    Resolve the Dynserv version.

    Returns:
        str: The version string (e.g., "0.1.0"), or "unknown"
    """
    if VERSION_FILE.exists():
        return VERSION_FILE.read_text().strip()
    try:
        return version("dynserv")
    except PackageNotFoundError:
        return "unknown"


__version__ = get_version()
