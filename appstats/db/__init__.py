"""Database layer."""
from .base import Store
from .connection import get_connection, get_cursor, ensure_db_exists
from .store import SQLiteStore

__all__ = ['Store', 'SQLiteStore', 'get_connection', 'get_cursor', 'ensure_db_exists']
