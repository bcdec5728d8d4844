"""
Catalog management: CRUD with invariants and declarative definitions.
"""

from .loader import CatalogConfigLoader
from .service import UNSET, CatalogService

__all__ = ["CatalogService", "CatalogConfigLoader", "UNSET"]
