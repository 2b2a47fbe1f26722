"""Patch catalogs: YAML schema, loader and the built-in phase catalogs."""

from .loader import BUILTIN_PREFIX, Catalog, CatalogError, builtin_catalogs, load_catalog, parse_catalog

__all__ = [
    "BUILTIN_PREFIX",
    "Catalog",
    "CatalogError",
    "builtin_catalogs",
    "load_catalog",
    "parse_catalog",
]
