"""
Database access for Tally sync.

- Connection management and DDL for the sync tables
- PostgreSQL implementation of the SyncStore interface
"""

from .base import DatabaseStore, get_connection
from .postgres import PostgresSyncStore, TRANSACTION_TABLES

__all__ = [
    "DatabaseStore",
    "get_connection",
    "PostgresSyncStore",
    "TRANSACTION_TABLES",
]
