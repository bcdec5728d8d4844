"""
PostgreSQL persistence for the catalog and the run history.
"""

from .catalog import CatalogStore
from .connection import DatabaseConnectionPool
from .ddl import create_schema, drop_schema
from .runs import RunStore, StageOutcome

__all__ = [
    "DatabaseConnectionPool",
    "CatalogStore",
    "RunStore",
    "StageOutcome",
    "create_schema",
    "drop_schema",
]
