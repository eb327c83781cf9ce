"""Store registry and factory.

Consumers should never hard-code store class names. The registry maps a
backend name to a store class and :func:`get_store` creates a configured
instance; :func:`create_store` does the same from
:class:`~ratchet.core.settings.RatchetSettings`.
"""

from __future__ import annotations

from typing import Any

from ratchet.core.errors import ConfigError
from ratchet.core.settings import RatchetSettings

from .base import MigrationStore
from .mysql import MySQLStore
from .sqlite import SQLiteStore
from .types import StoreType


class StoreRegistry:
    """
    Registry for migration store classes.

    Pre-registered stores:
    - ``mysql`` / ``mariadb``: :class:`MySQLStore`
    - ``sqlite``: :class:`SQLiteStore`
    """

    def __init__(self):
        self._factories: dict[str, type[MigrationStore]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories["mysql"] = MySQLStore
        self._factories["mariadb"] = MySQLStore  # Alias
        self._factories["sqlite"] = SQLiteStore

    def register(self, name: str, store_class: type[MigrationStore]) -> None:
        """Register a store class for an alternate backend."""
        self._factories[name.lower()] = store_class

    def create(self, name: str, **kwargs: Any) -> MigrationStore:
        """Create a store by backend name."""
        name = name.lower()
        if name not in self._factories:
            raise ConfigError(f"Unknown store backend: {name}")
        return self._factories[name](**kwargs)

    def list_stores(self) -> list[str]:
        """List registered backend names."""
        return sorted(self._factories.keys())


# Global registry
store_registry = StoreRegistry()


def get_store(store_type: StoreType | str, **kwargs: Any) -> MigrationStore:
    """
    Get an unopened store by backend type.

    Usage:
        store = get_store(StoreType.SQLITE, path="state.db")
        store = get_store("mysql", user="app", database="app")
    """
    name = store_type.value if isinstance(store_type, StoreType) else store_type
    return store_registry.create(name, **kwargs)


def create_store(settings: RatchetSettings | None = None) -> MigrationStore:
    """Build an unopened store from settings (environment by default)."""
    settings = settings or RatchetSettings()
    return get_store(settings.backend, **settings.store_kwargs())


__all__ = [
    "StoreRegistry",
    "store_registry",
    "get_store",
    "create_store",
]
