"""
Connection handle for the database façade.

Owns at most one ``AsyncIOMotorClient`` per handle. The client is created
lazily on the first ``ensure_connected()`` call and reused until ``close()``.

Concurrent first callers await the same establishment future, so only one
client is ever created per handle.
"""

import asyncio
import logging
import time
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..config import ConnectionDescriptor
from ..constants import (
    DEFAULT_APP_NAME,
    DEFAULT_MAX_IDLE_TIME_MS,
    DEFAULT_MAX_POOL_SIZE,
    DEFAULT_MIN_POOL_SIZE,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
)
from ..exceptions import ConnectionClosed, InitializationError
from ..observability import get_logger as get_contextual_logger
from ..observability import record_operation

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class ConnectionHandle:
    """
    Lazily established MongoDB connection.

    Example:
        handle = ConnectionHandle(descriptor)
        db = await handle.ensure_connected()   # connects
        db = await handle.ensure_connected()   # reuses
        await handle.close()
    """

    def __init__(self, descriptor: ConnectionDescriptor, **driver_options: Any) -> None:
        """
        Initialize the handle. No I/O happens here.

        Args:
            descriptor: Resolved connection descriptor
            **driver_options: Extra keyword arguments for AsyncIOMotorClient
                (maxPoolSize, serverSelectionTimeoutMS, ...)
        """
        self.descriptor = descriptor
        self._driver_options = {
            "serverSelectionTimeoutMS": DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
            "appname": DEFAULT_APP_NAME,
            "maxPoolSize": DEFAULT_MAX_POOL_SIZE,
            "minPoolSize": DEFAULT_MIN_POOL_SIZE,
            "maxIdleTimeMS": DEFAULT_MAX_IDLE_TIME_MS,
            "retryWrites": True,
            "retryReads": True,
            **driver_options,
        }

        self._client: AsyncIOMotorClient | None = None
        self._database: AsyncIOMotorDatabase | None = None
        self._connecting: asyncio.Future | None = None
        self._closed: bool = False

    @property
    def connected(self) -> bool:
        return self._database is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def client(self) -> AsyncIOMotorClient:
        """
        The live motor client.

        Raises:
            ConnectionClosed: If the handle was closed
            RuntimeError: If the handle has not connected yet
        """
        if self._closed:
            raise ConnectionClosed("Connection handle is closed")
        if self._client is None:
            raise RuntimeError("Connection not established. Call ensure_connected() first.")
        return self._client

    async def ensure_connected(self) -> AsyncIOMotorDatabase:
        """
        Return the live database, establishing the connection on first use.

        Returns:
            AsyncIOMotorDatabase for the descriptor's database

        Raises:
            ConnectionClosed: If the handle was closed
            InitializationError: If the connection could not be established
        """
        if self._closed:
            raise ConnectionClosed(
                "Connection handle is closed",
                context={"db_name": self.descriptor.database},
            )

        if self._database is not None:
            return self._database

        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._establish())

        connecting = self._connecting
        try:
            return await asyncio.shield(connecting)
        except InitializationError:
            # Let a later explicit call try again.
            if self._connecting is connecting:
                self._connecting = None
            raise

    async def _establish(self) -> AsyncIOMotorDatabase:
        start_time = time.time()
        descriptor = self.descriptor

        contextual_logger.info(
            "Connecting to MongoDB",
            extra={
                "mongo_uri": descriptor.redacted_connection_string,
                "db_name": descriptor.database,
            },
        )

        client = None
        try:
            client = AsyncIOMotorClient(descriptor.connection_string, **self._driver_options)
            await client.admin.command("ping")
            database = client[descriptor.database]
        except (PyMongoError, TypeError, ValueError) as e:
            duration_ms = (time.time() - start_time) * 1000
            record_operation("connection.establish", duration_ms, success=False)
            contextual_logger.critical(
                "MongoDB connection failed",
                extra={
                    "error_type": type(e).__name__,
                    "error": str(e),
                    "duration_ms": round(duration_ms, 2),
                },
                exc_info=True,
            )
            if client is not None:
                client.close()
            raise InitializationError(
                f"Failed to connect to MongoDB: {e}",
                mongo_uri=descriptor.redacted_connection_string,
                db_name=descriptor.database,
                context={"error_type": type(e).__name__},
            ) from e

        if self._closed:
            # close() ran while the ping was in flight.
            client.close()
            raise ConnectionClosed(
                "Connection handle was closed while connecting",
                context={"db_name": descriptor.database},
            )

        self._client = client
        self._database = database

        duration_ms = (time.time() - start_time) * 1000
        record_operation("connection.establish", duration_ms, success=True)
        contextual_logger.info(
            "MongoDB connection established",
            extra={"db_name": descriptor.database, "duration_ms": round(duration_ms, 2)},
        )
        return database

    async def close(self) -> None:
        """
        Release the live connection. Idempotent.

        Every later ``ensure_connected()`` raises ConnectionClosed.
        """
        if self._closed:
            return
        self._closed = True

        start_time = time.time()
        if self._client is not None:
            self._client.close()
            logger.info(f"MongoDB connection to '{self.descriptor.database}' closed")

        self._client = None
        self._database = None
        self._connecting = None

        record_operation("connection.close", (time.time() - start_time) * 1000, success=True)
