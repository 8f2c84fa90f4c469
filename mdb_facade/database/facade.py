"""
Database façade.

``Database`` is the single entry point applications use for one MongoDB
connection. It has a fixed set of members (connection, collection
targeting, schema, transactions, CRUD, aggregation, pagination) and
forwards every other public name to a fresh ``QueryBuilder``::

    db = Database({"client": "mongodb", "connection": {...}})

    db.set_collection("users")
    db.where("age").gte(18)              # forwarded to a new QueryBuilder
    adults = await db.find()             # runs the current builder

    count = await db.where({"status": "active"}).count()
    total = await db.aggregate("sum", "amount", "user_id")

Forwarding happens through ``invoke(name, *args, **kwargs)``; attribute
access (``db.where``) resolves through the same table. Names that are not
callable on a QueryBuilder raise ``UnsupportedOperation``.

Global transactions: after ``begin_global_transaction()`` every builder the
façade creates carries that transaction until it is committed or rolled
back. This state is shared by every task using the instance, so it is
meant for test harnesses, not concurrent production code.
"""

import functools
import logging
from collections.abc import Callable, Mapping
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult

from ..config import ConnectionDescriptor
from ..constants import DEFAULT_PAGE, DEFAULT_PER_PAGE
from ..exceptions import (
    InvalidArgument,
    MongoFacadeError,
    NoActiveTransaction,
    UnsupportedOperation,
)
from ..indexes import SchemaAccessor
from ..observability import get_logger as get_contextual_logger
from ..observability import set_query_context
from .aggregation import AggregationEngine, make_paginate_meta
from .connection import ConnectionHandle
from .query_builder import QueryBuilder
from .transaction import TransactionContext

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class Database:
    """
    Façade over one MongoDB connection.

    Args:
        config: ``{"client": "mongodb", "connection": {...}}`` record
        **driver_options: Extra keyword arguments for the motor client

    Raises:
        UnsupportedClient: If ``config["client"]`` is not ``"mongodb"``
        InvalidConfiguration: If the connection block is invalid
    """

    def __init__(self, config: Mapping[str, Any], **driver_options: Any) -> None:
        self.descriptor = ConnectionDescriptor.from_config(config)
        self._handle = ConnectionHandle(self.descriptor, **driver_options)
        self.collection_name: str | None = None
        self._global_trx: TransactionContext | None = None
        self._query = QueryBuilder(resolver=self._resolver())

    # ------------------------------------------------------------------
    # Connection & collection targeting
    # ------------------------------------------------------------------

    async def connect(self) -> AsyncIOMotorDatabase:
        """Establish the connection on first use and return the database."""
        return await self._handle.ensure_connected()

    async def collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """Return the motor collection ``collection_name``."""
        db = await self.connect()
        return db[collection_name]

    def set_collection(self, collection_name: str) -> "Database":
        """Target ``collection_name`` for the following operations."""
        if not collection_name:
            raise InvalidArgument("set_collection() requires a collection name")
        self.collection_name = collection_name
        return self

    async def _resolve_collection(
        self, collection_name: str | None, operation: str
    ) -> AsyncIOMotorCollection:
        if not collection_name:
            raise InvalidArgument(
                f"{operation}() requires a collection; call set_collection() first",
                context={"operation": operation},
            )
        return await self.collection(collection_name)

    def _resolver(self) -> Callable:
        return functools.partial(self._resolve_collection, self.collection_name)

    async def close(self) -> None:
        """Close the connection. No more queries can be made after this."""
        await self._handle.close()

    @property
    def connection(self) -> ConnectionHandle:
        return self._handle

    async def __aenter__(self) -> "Database":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    @property
    def schema(self) -> SchemaAccessor:
        """
        Schema accessor for collection and index management.

        Obtain a new accessor for every operation::

            await db.schema.create_collection("users", callback)
            await db.schema.drop_collection_if_exists("profiles")
        """
        return SchemaAccessor(self._handle)

    # ------------------------------------------------------------------
    # Query builders
    # ------------------------------------------------------------------

    def query(self) -> QueryBuilder:
        """
        Return a new QueryBuilder and make it the current one.

        The global transaction, when active, is attached to it.
        """
        builder = QueryBuilder(resolver=self._resolver())
        if self._global_trx is not None:
            builder.transacting(self._global_trx)
        self._query = builder
        return builder

    @property
    def conditions(self) -> dict[str, Any]:
        """Filter accumulated on the current query builder (a copy)."""
        return dict(self._query.conditions)

    def raw(self, expression: Mapping[str, Any]) -> QueryBuilder:
        """Add a raw filter expression to the current query builder."""
        return self._query.raw(expression)

    def clone(self) -> QueryBuilder:
        """Copy of the current query builder."""
        return self._query.clone()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def begin_transaction(self, **transaction_options: Any) -> TransactionContext:
        """
        Start a transaction to attach to queries with ``transacting()``.

        Example:
            trx = await db.begin_transaction()
            await db.set_collection("users").query().transacting(trx).insert({"name": "virk"})
            await trx.commit()

        Raises:
            TransactionStartFailed: If the driver rejects the transaction
        """
        await self.connect()
        return await TransactionContext.begin(self._handle.client, **transaction_options)

    @property
    def global_transaction(self) -> TransactionContext | None:
        return self._global_trx

    async def begin_global_transaction(self, **transaction_options: Any) -> TransactionContext:
        """
        Start a transaction that every following query joins automatically.

        Only use this when writing tests.
        """
        if self._global_trx is not None:
            raise MongoFacadeError(
                "A global transaction is already active",
                context={"status": self._global_trx.status.value},
            )
        self._global_trx = await self.begin_transaction(**transaction_options)
        contextual_logger.info(
            "Global transaction started", extra={"db_name": self.descriptor.database}
        )
        return self._global_trx

    def _take_global_transaction(self, action: str) -> TransactionContext:
        trx = self._global_trx
        if trx is None:
            raise NoActiveTransaction(
                f"Cannot {action}: no global transaction is active",
                context={"db_name": self.descriptor.database},
            )
        self._global_trx = None
        if self._query.transaction is trx:
            self._query.transacting(None)
        return trx

    async def commit_global_transaction(self) -> None:
        await self._take_global_transaction("commit").commit()
        contextual_logger.info(
            "Global transaction committed", extra={"db_name": self.descriptor.database}
        )

    async def rollback_global_transaction(self) -> None:
        await self._take_global_transaction("rollback").rollback()
        contextual_logger.info(
            "Global transaction rolled back", extra={"db_name": self.descriptor.database}
        )

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    async def _bound_query(self, operation: str) -> QueryBuilder:
        collection = await self._resolve_collection(self.collection_name, operation)
        set_query_context(
            self.descriptor.database, collection=self.collection_name, operation=operation
        )
        builder = self._query
        if builder.transaction is None and self._global_trx is not None:
            builder.transacting(self._global_trx)
        return builder.collection(collection)

    async def find(self, conditions: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """
        Documents matching the current query.

        ``conditions`` are merged into the current query builder and stay there
        for the operations that follow it.
        """
        return await (await self._bound_query("find")).find(conditions)

    async def find_one(self, conditions: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """First document matching the current query."""
        return await (await self._bound_query("find_one")).find_one(conditions)

    async def first(self, conditions: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        return await self.find_one(conditions)

    async def update(self, *args: Any, **kwargs: Any) -> UpdateResult:
        """Update documents matching the current query. See ``QueryBuilder.update``."""
        return await (await self._bound_query("update")).update(*args, **kwargs)

    async def delete(self, *args: Any, **kwargs: Any) -> DeleteResult:
        """Delete documents matching the current query. See ``QueryBuilder.remove``."""
        return await (await self._bound_query("delete")).remove(*args, **kwargs)

    async def insert(
        self, documents: Mapping[str, Any] | list[Mapping[str, Any]]
    ) -> InsertOneResult | InsertManyResult:
        """Insert one document or a list of documents into the target collection."""
        return await (await self._bound_query("insert")).insert(documents)

    async def aggregate(
        self, aggregator: str, key: str | None = None, group_by: str | None = None
    ) -> Any:
        """
        Reduce the documents matching the current query.

        Args:
            aggregator: count, max, min, sum or avg
            key: Field to reduce (required except for count)
            group_by: Field to group on

        Returns:
            List of ``{"_id": <group>, <aggregator>: <value>}`` when grouped,
            otherwise the scalar value or None when nothing matched.

        Example:
            await db.set_collection("orders").aggregate("sum", "amount", "user_id")
            # [{"_id": 1, "sum": 8}]
        """
        collection = await self._resolve_collection(self.collection_name, "aggregate")
        set_query_context(
            self.descriptor.database, collection=self.collection_name, operation="aggregate"
        )
        transaction = self._query.transaction or self._global_trx
        engine = AggregationEngine(collection, transaction)
        return await engine.aggregate(self.conditions, aggregator, key, group_by)

    async def paginate(
        self, page: int = DEFAULT_PAGE, limit: int = DEFAULT_PER_PAGE
    ) -> dict[str, Any]:
        """
        One page of the current query.

        Pages start at 1, so ``page`` skips ``(page - 1) * limit`` documents.
        The current query keeps its own skip and limit.

        Returns:
            ``{"total", "per_page", "page", "last_page", "data"}``
        """
        if page < 1:
            raise InvalidArgument(f"page must be >= 1, got {page}")
        if limit < 1:
            raise InvalidArgument(f"limit must be >= 1, got {limit}")

        total = await self.aggregate("count")
        builder = (await self._bound_query("paginate")).clone()
        rows = await builder.limit(limit).skip((page - 1) * limit).find()

        result = make_paginate_meta(total, page, limit)
        result["data"] = rows
        return result

    # ------------------------------------------------------------------
    # Pass-through dispatch
    # ------------------------------------------------------------------

    def _resolve(self, name: str) -> Any:
        if name in FACADE_MEMBERS or name in vars(self):
            return getattr(self, name)

        if not callable(getattr(QueryBuilder, name, None)):
            raise UnsupportedOperation(name)

        logger.debug(f"Forwarding '{name}' to a new QueryBuilder")
        return getattr(self.query(), name)

    def invoke(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Call ``name`` on the façade, or on a new QueryBuilder if the façade has no such member.

        Coroutine results are returned un-awaited.

        Raises:
            UnsupportedOperation: If ``name`` is not a callable QueryBuilder member
        """
        if not name or name.startswith("_"):
            raise UnsupportedOperation(name)
        member = self._resolve(name)
        if not callable(member):
            if args or kwargs:
                raise InvalidArgument(f"Database.{name} is not callable")
            return member
        return member(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal attribute lookup fails.
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
        return self._resolve(name)

    def __repr__(self) -> str:
        return (
            f"<Database {self.descriptor.redacted_connection_string} "
            f"collection={self.collection_name!r} "
            f"global_transaction={self._global_trx is not None}>"
        )


FACADE_MEMBERS: frozenset[str] = frozenset(
    name for name in vars(Database) if not name.startswith("_")
)
"""Names the façade answers itself; anything else goes to a QueryBuilder."""
