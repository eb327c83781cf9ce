"""Migration stores -- one contract, pluggable relational backends.

Architecture::

    MigrationStore (base.py)         Abstract contract + shared SQL helpers
        |-- MySQLStore               PyMySQL, mutual TLS (reference backend)
        |-- SQLiteStore              stdlib sqlite3

    TLSProfile (tls.py)              Client TLS + post-handshake verification
    StoreRegistry (registry.py)      Backend name -> store class
    Migration, StoreConfig (types.py)

Modules
-------
base        Abstract MigrationStore
types       Migration, TLSMaterial, StoreConfig, StoreType, schema versions
tls         TLSProfile and the verifying SSL context/socket
mysql       MySQL / MariaDB store
sqlite      SQLite store
registry    StoreRegistry, get_store(), create_store()
"""

from .base import MigrationStore
from .mysql import MySQLStore
from .registry import StoreRegistry, create_store, get_store, store_registry
from .sqlite import SQLiteStore
from .tls import TLSProfile
from .types import (
    LEGACY_SCHEMA_VERSION,
    SCHEMA_VERSION,
    Migration,
    StoreConfig,
    StoreType,
    TLSMaterial,
)

__all__ = [
    # Types
    "SCHEMA_VERSION",
    "LEGACY_SCHEMA_VERSION",
    "Migration",
    "StoreConfig",
    "StoreType",
    "TLSMaterial",
    # Contract
    "MigrationStore",
    # Implementations
    "MySQLStore",
    "SQLiteStore",
    "TLSProfile",
    # Registry
    "StoreRegistry",
    "store_registry",
    "get_store",
    "create_store",
]
