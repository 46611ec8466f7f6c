"""SQLite catalog: confirmed library items and staged import rows."""

from meshshelf.catalog.store import SCHEMA_VERSION, CatalogStore, open_catalog

__all__ = ["SCHEMA_VERSION", "CatalogStore", "open_catalog"]
