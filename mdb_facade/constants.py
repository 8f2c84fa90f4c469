"""
Constants for MDB_FACADE.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

SUPPORTED_CLIENT: Final[str] = "mongodb"
"""The only `client` value accepted in a connection configuration."""

DEFAULT_HOST: Final[str] = "localhost"
"""Default MongoDB host."""

DEFAULT_PORT: Final[int] = 27017
"""Default MongoDB port."""

DEFAULT_MAX_POOL_SIZE: Final[int] = 50
"""Default maximum MongoDB connection pool size."""

DEFAULT_MIN_POOL_SIZE: Final[int] = 1
"""Default minimum MongoDB connection pool size."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Default server selection timeout in milliseconds."""

DEFAULT_MAX_IDLE_TIME_MS: Final[int] = 45000
"""Default maximum idle time before closing connections (milliseconds)."""

DEFAULT_APP_NAME: Final[str] = "MDB_FACADE"
"""Application name reported to the server."""

# ============================================================================
# AGGREGATION CONSTANTS
# ============================================================================

AGGREGATOR_COUNT: Final[str] = "count"
AGGREGATOR_MAX: Final[str] = "max"
AGGREGATOR_MIN: Final[str] = "min"
AGGREGATOR_SUM: Final[str] = "sum"
AGGREGATOR_AVG: Final[str] = "avg"

FIELD_AGGREGATORS: Final[tuple[str, ...]] = (
    AGGREGATOR_MAX,
    AGGREGATOR_MIN,
    AGGREGATOR_SUM,
    AGGREGATOR_AVG,
)
"""Aggregators that reduce over a document field and therefore need a key."""

SUPPORTED_AGGREGATORS: Final[tuple[str, ...]] = (AGGREGATOR_COUNT, *FIELD_AGGREGATORS)

# ============================================================================
# PAGINATION CONSTANTS
# ============================================================================

DEFAULT_PAGE: Final[int] = 1
"""First page number (pages are 1-based)."""

DEFAULT_PER_PAGE: Final[int] = 20
"""Default number of documents per page."""
