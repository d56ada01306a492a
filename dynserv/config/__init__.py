"""
Configuration management for Dynserv.

Handles loading and validation of configuration files.
"""

from dynserv.config.settings import (
    AuthConfig,
    DynservConfig,
    LoggingConfig,
    ServerConfig,
    TLSConfig,
    get_default_config,
    get_default_config_path,
    load_config,
)

__all__ = [
    "AuthConfig",
    "DynservConfig",
    "LoggingConfig",
    "ServerConfig",
    "TLSConfig",
    "get_default_config",
    "get_default_config_path",
    "load_config",
]
