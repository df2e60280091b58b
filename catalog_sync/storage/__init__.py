"""
Storage layer for the catalog sync engine.

This module provides catalog persistence using DuckDB.

Components:
- Database: Connection management and schema initialization
- CatalogGateway: Idempotent upserts and link-set replacement
- StorageError: Raised when a gateway write cannot be applied

Usage:
    from catalog_sync.storage import Database, CatalogGateway

    db = Database("catalog.duckdb")
    db.initialize_schema()

    gateway = CatalogGateway(db)
    gateway.upsert_module(module_record)
    gateway.replace_links("exam", 1, "module", [12, 15])
"""

from .database import Database
from .gateway import CatalogGateway, StorageError

__all__ = [
    "Database",
    "CatalogGateway",
    "StorageError",
]
