"""
Database façade layer.

Provides the ``Database`` façade together with the connection handle,
query builder, transaction and aggregation pieces it is made of.
"""

from .aggregation import AggregationEngine, build_pipeline, make_paginate_meta
from .connection import ConnectionHandle
from .facade import FACADE_MEMBERS, Database
from .query_builder import QueryBuilder
from .transaction import TransactionContext, TransactionStatus

__all__ = [
    # Façade
    "Database",
    "FACADE_MEMBERS",
    # Connection
    "ConnectionHandle",
    # Queries
    "QueryBuilder",
    # Transactions
    "TransactionContext",
    "TransactionStatus",
    # Aggregation
    "AggregationEngine",
    "build_pipeline",
    "make_paginate_meta",
]
