"""
MDB_FACADE - MongoDB database façade

Lazy connection handling, query-builder pass-through, scoped and global
transactions, schema/index management and aggregation helpers on top of
Motor.
"""

from .config import ConnectionDescriptor, DatabaseConfig
from .database import Database, QueryBuilder, TransactionContext, TransactionStatus
from .exceptions import (
    ConnectionClosed,
    InitializationError,
    InvalidArgument,
    InvalidConfiguration,
    MongoFacadeError,
    NoActiveTransaction,
    SchemaAlreadyBuilt,
    TransactionNotActive,
    TransactionStartFailed,
    UnsupportedClient,
    UnsupportedOperation,
)
from .indexes import SchemaAccessor, SchemaBuilder

__version__ = "0.1.0"

__all__ = [
    # Core
    "Database",
    "QueryBuilder",
    "TransactionContext",
    "TransactionStatus",
    # Schema
    "SchemaBuilder",
    "SchemaAccessor",
    # Configuration
    "ConnectionDescriptor",
    "DatabaseConfig",
    # Errors
    "MongoFacadeError",
    "InvalidConfiguration",
    "UnsupportedClient",
    "InitializationError",
    "ConnectionClosed",
    "UnsupportedOperation",
    "InvalidArgument",
    "NoActiveTransaction",
    "TransactionStartFailed",
    "TransactionNotActive",
    "SchemaAlreadyBuilt",
]
