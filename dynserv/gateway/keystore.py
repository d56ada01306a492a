"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

API key lookup.

The valid API key lives in a named config store (a flat key/value mapping).
Stores are provided by a ConfigStoreRegistry; opening a store that does not
exist raises ConfigStoreUnavailableError. KeyLookup wraps this with the
documented fallback: when the store is unavailable, the fallback key is used
so a gateway without any store configured still works locally.
"""

from typing import Dict, Mapping, Optional

from dynserv.config.settings import (
    DEFAULT_CONFIG_STORE,
    DEFAULT_FALLBACK_KEY,
    DEFAULT_KEY_NAME,
    DynservConfig,
)
from dynserv.exceptions import ConfigStoreUnavailableError
from dynserv.logging_config import get_logger

logger = get_logger(__name__)


class ConfigStore:
    """Read-only named key/value store."""

    def __init__(self, name: str, entries: Mapping[str, str]):
        self.name = name
        self._entries: Dict[str, str] = dict(entries)

    def get(self, key: str) -> Optional[str]:
        """Return the value for ``key``, or None when absent or empty."""
        return self._entries.get(key) or None


class ConfigStoreRegistry:
    """Opens config stores by name."""

    def __init__(self, stores: Optional[Mapping[str, Mapping[str, str]]] = None):
        self._stores: Dict[str, Dict[str, str]] = {
            name: dict(entries) for name, entries in (stores or {}).items()
        }

    @classmethod
    def from_config(cls, config: DynservConfig) -> "ConfigStoreRegistry":
        return cls(config.config_stores)

    def open(self, name: str) -> ConfigStore:
        """
        Open a config store.

        Raises:
            ConfigStoreUnavailableError: If no store with that name exists
        """
        if name not in self._stores:
            raise ConfigStoreUnavailableError(f"Config store '{name}' is not available")
        return ConfigStore(name, self._stores[name])


class KeyLookup:
    """
    Resolves the currently valid API key.

    The lookup runs on every call; nothing is cached between requests.
    """

    def __init__(
        self,
        registry: ConfigStoreRegistry,
        store_name: str = DEFAULT_CONFIG_STORE,
        key_name: str = DEFAULT_KEY_NAME,
        fallback: str = DEFAULT_FALLBACK_KEY,
    ):
        self.registry = registry
        self.store_name = store_name
        self.key_name = key_name
        self.fallback = fallback

    @classmethod
    def from_config(cls, config: DynservConfig) -> "KeyLookup":
        return cls(
            registry=ConfigStoreRegistry.from_config(config),
            store_name=config.auth.config_store,
            key_name=config.auth.key_name,
            fallback=config.auth.fallback_key,
        )

    def get_valid_key(self) -> Optional[str]:
        """
        Return the valid API key.

        Returns:
            The stored key; the fallback when the store is unavailable; None
            when the store exists but holds no key (no caller is admitted).
        """
        try:
            store = self.registry.open(self.store_name)
        except ConfigStoreUnavailableError as e:
            logger.debug("config_store_unavailable_using_fallback", store=self.store_name, error=str(e))
            return self.fallback

        valid_key = store.get(self.key_name)
        if valid_key is None:
            logger.warning("config_store_key_missing", store=self.store_name, key_name=self.key_name)
        return valid_key
