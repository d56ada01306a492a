"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Configuration management for Dynserv.

Loads the gateway YAML file into dataclasses, expanding ${ENV_VAR} and
${ENV_VAR:default} references. A missing or empty file gives the defaults.

Upstream TLS versions and timeouts have no configuration keys; they are
fixed in dynserv.gateway.upstream.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from dynserv.exceptions import InvalidConfigurationError
from dynserv.logging_config import get_logger

logger = get_logger(__name__)


DEFAULT_CONFIG_STORE = "dynserv-key"
DEFAULT_KEY_NAME = "key"
DEFAULT_FALLBACK_KEY = "testing"


def _expand_env_vars(value: Any) -> Any:
    """
    Recursively expand environment variables in configuration values.

    Supports ${ENV_VAR} syntax with optional default values: ${ENV_VAR:default}

    Args:
        value: Configuration value (string, dict, list, or other)

    Returns:
        Value with environment variables expanded

    Examples:
        "${DYNSERV_API_KEY}" -> value of DYNSERV_API_KEY env var
        "${DYNSERV_LISTEN:0.0.0.0:7676}" -> value of DYNSERV_LISTEN or "0.0.0.0:7676"
    """
    if isinstance(value, str):
        # Pattern matches ${VAR} or ${VAR:default}
        pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

        def replace_env_var(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(var_name, default_value)

        return re.sub(pattern, replace_env_var, value)
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    else:
        return value


@dataclass
class TLSConfig:
    """Inbound TLS configuration for the gateway listener."""

    cert_file: str = ""
    key_file: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.cert_file and self.key_file)


@dataclass
class ServerConfig:
    """Inbound HTTP server configuration."""

    listen_address: str = "0.0.0.0:7676"
    tls: TLSConfig = field(default_factory=TLSConfig)


@dataclass
class AuthConfig:
    """
    API key lookup configuration.

    The valid key is read from entry ``key_name`` of the config store named
    ``config_store``. ``fallback_key`` applies when that store is unavailable.
    """

    config_store: str = DEFAULT_CONFIG_STORE
    key_name: str = DEFAULT_KEY_NAME
    fallback_key: str = DEFAULT_FALLBACK_KEY


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file: str = ""
    format: str = "json"  # "json" or "console"


@dataclass
class DynservConfig:
    """Main Dynserv configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    config_stores: Dict[str, Dict[str, str]] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def get_default_config_path() -> str:
    """Get the default configuration file path."""
    return os.path.expanduser("~/.dynserv/config.yaml")


def get_default_config() -> DynservConfig:
    """
    Get the built-in default configuration.

    No config stores are defined, so the fallback key is in effect.

    Returns:
        DynservConfig: Default configuration object
    """
    return DynservConfig()


def load_config(config_path: Optional[str] = None) -> DynservConfig:
    """
    Load configuration from YAML file with validation.

    If config file is not found, returns default configuration.
    If config file is malformed or invalid, raises InvalidConfigurationError.

    Args:
        config_path: Path to configuration file. If None, uses default path.

    Returns:
        DynservConfig: Loaded and validated configuration

    Raises:
        InvalidConfigurationError: If configuration is invalid or malformed
    """
    if config_path is None:
        config_path = get_default_config_path()

    config_path = os.path.expanduser(config_path)

    if not os.path.exists(config_path):
        logger.info(f"Configuration file not found at {config_path}, using defaults")
        return get_default_config()

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f)
        logger.debug(f"Loaded configuration from {config_path}")
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML configuration file '{config_path}': {e}", exc_info=True)
        raise InvalidConfigurationError(
            f"Failed to parse YAML configuration file '{config_path}': {e}"
        )
    except OSError as e:
        logger.error(f"Failed to read configuration file '{config_path}': {e}", exc_info=True)
        raise InvalidConfigurationError(
            f"Failed to read configuration file '{config_path}': {e}"
        )

    if config_data is None:
        logger.info(f"Configuration file {config_path} is empty, using defaults")
        return get_default_config()

    if not isinstance(config_data, dict):
        raise InvalidConfigurationError(
            f"Invalid configuration in '{config_path}': top level must be a mapping"
        )

    config_data = _expand_env_vars(config_data)
    logger.debug("Expanded environment variables in configuration")

    try:
        config = _build_config_from_dict(config_data)
        _validate_config(config)
    except (InvalidConfigurationError, TypeError, ValueError, AttributeError) as e:
        logger.error(f"Invalid configuration in '{config_path}': {e}", exc_info=True)
        raise InvalidConfigurationError(
            f"Invalid configuration in '{config_path}': {e}"
        )

    logger.info(f"Successfully loaded and validated configuration from {config_path}")
    return config


def _build_config_from_dict(config_data: Dict[str, Any]) -> DynservConfig:
    """
    Build DynservConfig from dictionary loaded from YAML.

    Merges user configuration with defaults.

    Args:
        config_data: Dictionary loaded from YAML file

    Returns:
        DynservConfig: Configuration object

    Raises:
        InvalidConfigurationError: If a section has the wrong shape
    """
    default_config = get_default_config()

    server_data = config_data.get('server') or {}
    tls_data = server_data.get('tls') or {}
    tls = TLSConfig(
        cert_file=os.path.expanduser(tls_data.get('cert_file', default_config.server.tls.cert_file)),
        key_file=os.path.expanduser(tls_data.get('key_file', default_config.server.tls.key_file)),
    )
    server = ServerConfig(
        listen_address=str(server_data.get('listen_address', default_config.server.listen_address)),
        tls=tls,
    )

    auth_data = config_data.get('auth') or {}
    auth = AuthConfig(
        config_store=str(auth_data.get('config_store', default_config.auth.config_store)),
        key_name=str(auth_data.get('key_name', default_config.auth.key_name)),
        fallback_key=str(auth_data.get('fallback_key', default_config.auth.fallback_key)),
    )

    stores_data = config_data.get('config_stores') or {}
    if not isinstance(stores_data, dict):
        raise InvalidConfigurationError("'config_stores' must be a mapping of store name to entries")

    config_stores: Dict[str, Dict[str, str]] = {}
    for store_name, entries in stores_data.items():
        entries = entries or {}
        if not isinstance(entries, dict):
            raise InvalidConfigurationError(
                f"Config store '{store_name}' must be a mapping of keys to values"
            )
        for entry_key, entry_value in entries.items():
            if isinstance(entry_value, (dict, list)):
                raise InvalidConfigurationError(
                    f"Config store '{store_name}' entry '{entry_key}' must be a scalar value"
                )
        config_stores[str(store_name)] = {
            str(k): "" if v is None else str(v) for k, v in entries.items()
        }

    logging_data = config_data.get('logging') or {}
    logging_config = LoggingConfig(
        level=str(logging_data.get('level', default_config.logging.level)),
        file=os.path.expanduser(str(logging_data.get('file', default_config.logging.file))),
        format=str(logging_data.get('format', default_config.logging.format)),
    )

    return DynservConfig(
        server=server,
        auth=auth,
        config_stores=config_stores,
        logging=logging_config,
    )


def validate_listen_address(address: str) -> None:
    """
    Check that a listen address has the form host:port.

    Raises:
        InvalidConfigurationError: If the host is empty or the port is not 1-65535
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host or not (port.isascii() and port.isdigit()) or not 0 < int(port) < 65536:
        raise InvalidConfigurationError(
            f"listen_address must be 'host:port', got '{address}'"
        )


def _validate_config(config: DynservConfig) -> None:
    """
    Validate configuration values.

    Args:
        config: Configuration to validate

    Raises:
        InvalidConfigurationError: If configuration is invalid
    """
    validate_listen_address(config.server.listen_address)

    if bool(config.server.tls.cert_file) != bool(config.server.tls.key_file):
        raise InvalidConfigurationError(
            "server.tls.cert_file and server.tls.key_file must be set together"
        )

    if not config.auth.config_store:
        raise InvalidConfigurationError("auth.config_store cannot be empty")
    if not config.auth.key_name:
        raise InvalidConfigurationError("auth.key_name cannot be empty")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.logging.level.upper() not in valid_log_levels:
        raise InvalidConfigurationError(
            f"logging level must be one of {valid_log_levels}, "
            f"got '{config.logging.level}'"
        )

    valid_formats = ["json", "console"]
    if config.logging.format not in valid_formats:
        raise InvalidConfigurationError(
            f"logging format must be one of {valid_formats}, "
            f"got '{config.logging.format}'"
        )
