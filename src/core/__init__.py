"""
Core module for RakshaSetu

Contains configuration management, logging, the document store and the
platform collaborator interfaces.
"""

from .config import ConfigurationManager, ConfigurationError
from .database import (
    DatabaseManager,
    DatabaseError,
    SQLiteDocumentStore,
    SERVER_TIMESTAMP,
    initialize_database,
    get_database
)

__all__ = [
    'ConfigurationManager',
    'ConfigurationError',
    'DatabaseManager',
    'DatabaseError',
    'SQLiteDocumentStore',
    'SERVER_TIMESTAMP',
    'initialize_database',
    'get_database'
]
