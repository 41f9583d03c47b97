"""Database adapters package.

Provides the ``DatabaseAdapter`` Protocol, the ``NamespaceView``
reconciliation source, and the PostgreSQL and MongoDB adapters.

Usage:
    from db_backup.adapters import DatabaseAdapter, PostgresAdapter, MongoAdapter
"""

from db_backup.adapters.base import DatabaseAdapter, NamespaceView
from db_backup.adapters.mongo import MongoAdapter
from db_backup.adapters.postgres import PostgresAdapter

__all__ = [
    "DatabaseAdapter",
    "NamespaceView",
    "PostgresAdapter",
    "MongoAdapter",
]
