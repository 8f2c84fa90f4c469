"""
Chainable MongoDB query builder.

A ``QueryBuilder`` accumulates a filter, projection, sort, skip and limit,
optionally carries a transaction, and is bound to a motor collection only
when it runs::

    builder = QueryBuilder().where("age").gte(18).where("status", "active")
    builder.sort("-created_at").limit(10)
    rows = await builder.collection(db["users"]).find()

Builders are single-use. Build a new one for every logical query; the
façade does this on every pass-through access.
"""

import copy
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult

from ..exceptions import InvalidArgument
from .transaction import TransactionContext

logger = logging.getLogger(__name__)

_MISSING = object()


def _parse_sort(spec: Any, direction: Any = _MISSING) -> list[tuple[str, int]]:
    """Normalize "a -b", {"a": 1}, [("a", 1)] or ("a", -1) into (field, direction) pairs."""
    if direction is not _MISSING:
        return [(spec, direction)]
    if isinstance(spec, str):
        pairs = []
        for token in spec.split():
            if token.startswith("-"):
                pairs.append((token[1:], DESCENDING))
            else:
                pairs.append((token.lstrip("+"), ASCENDING))
        return pairs
    if isinstance(spec, Mapping):
        return list(spec.items())
    if isinstance(spec, (list, tuple)):
        return [tuple(pair) for pair in spec]
    raise InvalidArgument(f"Invalid sort specification: {spec!r}")


def _parse_projection(fields: Any) -> dict[str, Any]:
    """Normalize "a -b", ["a", "b"] or {"a": 1} into a projection document."""
    if isinstance(fields, str):
        projection = {}
        for token in fields.split():
            if token.startswith("-"):
                projection[token[1:]] = 0
            else:
                projection[token.lstrip("+")] = 1
        return projection
    if isinstance(fields, Mapping):
        return dict(fields)
    if isinstance(fields, (list, tuple)):
        return {field: 1 for field in fields}
    raise InvalidArgument(f"Invalid projection: {fields!r}")


def _is_operator_document(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(str(k).startswith("$") for k in value)


class QueryBuilder:
    """
    Mutable, single-use query construction object.

    Args:
        conditions: Initial filter document
        resolver: Coroutine function ``resolver(operation)`` returning the
            collection to run against when none was bound with ``collection()``
    """

    def __init__(
        self,
        conditions: Mapping[str, Any] | None = None,
        *,
        resolver: Callable[[str], Awaitable[AsyncIOMotorCollection]] | None = None,
    ) -> None:
        self._resolver = resolver
        self._conditions: dict[str, Any] = dict(conditions or {})
        self._path: str | None = None
        self._projection: dict[str, Any] | None = None
        self._sort: list[tuple[str, int]] = []
        self._skip: int = 0
        self._limit: int = 0
        self._transaction: TransactionContext | None = None
        self._collection: AsyncIOMotorCollection | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def conditions(self) -> dict[str, Any]:
        """The accumulated filter document."""
        return self._conditions

    @property
    def transaction(self) -> TransactionContext | None:
        return self._transaction

    def get_options(self) -> dict[str, Any]:
        """Projection, sort, skip and limit as they would be sent to the driver."""
        return {
            "projection": self._projection,
            "sort": list(self._sort),
            "skip": self._skip,
            "limit": self._limit,
        }

    def clone(self) -> "QueryBuilder":
        """
        Copy filter and options into a new builder.

        The transaction and bound collection are shared, not copied.
        """
        other = QueryBuilder(copy.deepcopy(self._conditions))
        other._path = self._path
        other._projection = copy.deepcopy(self._projection)
        other._sort = list(self._sort)
        other._skip = self._skip
        other._limit = self._limit
        other._transaction = self._transaction
        other._collection = self._collection
        other._resolver = self._resolver
        return other

    # ------------------------------------------------------------------
    # Filter construction
    # ------------------------------------------------------------------

    def where(self, path: Any = None, value: Any = _MISSING) -> "QueryBuilder":
        """
        Start a condition on ``path``, or merge a filter document.

        ``where("age")`` selects a path for the operator that follows,
        ``where("status", "active")`` adds an equality condition and
        ``where({"status": "active"})`` merges the document.
        """
        if isinstance(path, Mapping):
            return self.merge(path)
        if not isinstance(path, str) or not path:
            raise InvalidArgument("where() requires a field path or a filter document")
        self._path = path
        if value is not _MISSING:
            self._conditions[path] = value
        return self

    def equals(self, value: Any) -> "QueryBuilder":
        self._conditions[self._require_path("equals")] = value
        return self

    eq = equals

    def _require_path(self, operation: str) -> str:
        if self._path is None:
            raise InvalidArgument(f"{operation}() must be preceded by where(path)")
        return self._path

    def _operator(self, operator: str, args: tuple, name: str) -> "QueryBuilder":
        if len(args) == 2:
            path, value = args
            self._path = path
        elif len(args) == 1:
            path, value = self._require_path(name), args[0]
        else:
            raise InvalidArgument(f"{name}() takes a value or a path and a value")

        existing = self._conditions.get(path)
        if _is_operator_document(existing):
            existing[operator] = value
        else:
            self._conditions[path] = {operator: value}
        return self

    def ne(self, *args: Any) -> "QueryBuilder":
        return self._operator("$ne", args, "ne")

    def gt(self, *args: Any) -> "QueryBuilder":
        return self._operator("$gt", args, "gt")

    def gte(self, *args: Any) -> "QueryBuilder":
        return self._operator("$gte", args, "gte")

    def lt(self, *args: Any) -> "QueryBuilder":
        return self._operator("$lt", args, "lt")

    def lte(self, *args: Any) -> "QueryBuilder":
        return self._operator("$lte", args, "lte")

    def in_(self, *args: Any) -> "QueryBuilder":
        *head, values = args
        return self._operator("$in", (*head, list(values)), "in_")

    def nin(self, *args: Any) -> "QueryBuilder":
        *head, values = args
        return self._operator("$nin", (*head, list(values)), "nin")

    def exists(self, *args: Any) -> "QueryBuilder":
        if not args:
            args = (True,)
        return self._operator("$exists", args, "exists")

    def regex(self, *args: Any) -> "QueryBuilder":
        return self._operator("$regex", args, "regex")

    def or_(self, *conditions: Mapping[str, Any]) -> "QueryBuilder":
        self._conditions.setdefault("$or", []).extend(dict(c) for c in conditions)
        return self

    def and_(self, *conditions: Mapping[str, Any]) -> "QueryBuilder":
        self._conditions.setdefault("$and", []).extend(dict(c) for c in conditions)
        return self

    def merge(self, source: "QueryBuilder | Mapping[str, Any]") -> "QueryBuilder":
        """Merge another builder's conditions or a filter document into this one."""
        if isinstance(source, QueryBuilder):
            source = source.conditions
        if not isinstance(source, Mapping):
            raise InvalidArgument(f"Cannot merge {type(source).__name__} into a query")
        self._conditions.update(copy.deepcopy(dict(source)))
        return self

    def raw(self, expression: Mapping[str, Any]) -> "QueryBuilder":
        """Add a raw MongoDB filter expression (``$expr``, ``$text``, ...) verbatim."""
        if not isinstance(expression, Mapping) or not expression:
            raise InvalidArgument("raw() requires a non-empty filter document")
        self._conditions.update(expression)
        return self

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def select(self, fields: Any) -> "QueryBuilder":
        self._projection = _parse_projection(fields)
        return self

    def sort(self, spec: Any, direction: Any = _MISSING) -> "QueryBuilder":
        self._sort.extend(_parse_sort(spec, direction))
        return self

    def limit(self, count: int) -> "QueryBuilder":
        if count < 0:
            raise InvalidArgument(f"limit must be >= 0, got {count}")
        self._limit = count
        return self

    def skip(self, count: int) -> "QueryBuilder":
        if count < 0:
            raise InvalidArgument(f"skip must be >= 0, got {count}")
        self._skip = count
        return self

    def transacting(self, transaction: TransactionContext | None) -> "QueryBuilder":
        """Run this query inside ``transaction`` (None detaches it)."""
        self._transaction = transaction
        return self

    def collection(self, collection: AsyncIOMotorCollection) -> "QueryBuilder":
        """Bind the collection the query runs against."""
        self._collection = collection
        return self

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _require_collection(self, operation: str) -> AsyncIOMotorCollection:
        if self._collection is None and self._resolver is not None:
            self._collection = await self._resolver(operation)
        if self._collection is None:
            raise InvalidArgument(
                f"{operation}() requires a collection; call collection() first",
                context={"operation": operation},
            )
        return self._collection

    def _session_kwargs(self) -> dict[str, Any]:
        if self._transaction is None:
            return {}
        return {"session": self._transaction.session}

    async def _run(self, operation: str, awaitable: Awaitable) -> Any:
        collection_name = getattr(self._collection, "name", None)
        logger.debug(
            f"{operation} on '{collection_name}' with filter={self._conditions} "
            f"transaction={self._transaction is not None}"
        )
        try:
            return await awaitable
        except PyMongoError:
            logger.exception(f"Database operation failed in {operation} on '{collection_name}'")
            raise

    async def find(self, conditions: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Return every matching document."""
        if conditions:
            self.merge(conditions)
        collection = await self._require_collection("find")
        cursor = collection.find(self._conditions, self._projection, **self._session_kwargs())
        if self._sort:
            cursor = cursor.sort(self._sort)
        if self._skip > 0:
            cursor = cursor.skip(self._skip)
        if self._limit > 0:
            cursor = cursor.limit(self._limit)
        return await self._run("find", cursor.to_list(length=None))

    async def find_one(self, conditions: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """Return the first matching document or None."""
        if conditions:
            self.merge(conditions)
        collection = await self._require_collection("find_one")
        kwargs = self._session_kwargs()
        if self._sort:
            kwargs["sort"] = self._sort
        if self._skip > 0:
            kwargs["skip"] = self._skip
        return await self._run(
            "find_one", collection.find_one(self._conditions, self._projection, **kwargs)
        )

    async def count(self, conditions: Mapping[str, Any] | None = None) -> int:
        if conditions:
            self.merge(conditions)
        collection = await self._require_collection("count")
        kwargs = self._session_kwargs()
        if self._skip > 0:
            kwargs["skip"] = self._skip
        if self._limit > 0:
            kwargs["limit"] = self._limit
        return await self._run("count", collection.count_documents(self._conditions, **kwargs))

    async def insert(
        self, documents: Mapping[str, Any] | list[Mapping[str, Any]]
    ) -> InsertOneResult | InsertManyResult:
        """Insert one document, or many when given a list."""
        collection = await self._require_collection("insert")
        if isinstance(documents, list):
            if not documents:
                raise InvalidArgument("insert() requires at least one document")
            return await self._run(
                "insert",
                collection.insert_many([dict(d) for d in documents], **self._session_kwargs()),
            )
        if not isinstance(documents, Mapping):
            raise InvalidArgument(f"Cannot insert {type(documents).__name__}")
        return await self._run(
            "insert", collection.insert_one(dict(documents), **self._session_kwargs())
        )

    async def update(
        self,
        conditions_or_doc: Mapping[str, Any],
        doc: Mapping[str, Any] | None = None,
        *,
        multi: bool = False,
        upsert: bool = False,
    ) -> UpdateResult:
        """
        Update matching documents.

        ``update(doc)`` applies ``doc`` to the accumulated conditions;
        ``update(conditions, doc)`` merges ``conditions`` first. A document
        without update operators is wrapped in ``$set``.
        """
        if doc is None:
            doc = conditions_or_doc
        else:
            self.merge(conditions_or_doc)
        if not doc:
            raise InvalidArgument("update() requires an update document")
        if not _is_operator_document(doc):
            doc = {"$set": dict(doc)}

        collection = await self._require_collection("update")
        method = collection.update_many if multi else collection.update_one
        return await self._run(
            "update",
            method(self._conditions, dict(doc), upsert=upsert, **self._session_kwargs()),
        )

    async def remove(
        self, conditions: Mapping[str, Any] | None = None, *, single: bool = False
    ) -> DeleteResult:
        """Delete every matching document (only the first one when ``single``)."""
        if conditions:
            self.merge(conditions)
        collection = await self._require_collection("remove")
        method = collection.delete_one if single else collection.delete_many
        return await self._run("remove", method(self._conditions, **self._session_kwargs()))

    def __repr__(self) -> str:
        return f"<QueryBuilder conditions={self._conditions!r} options={self.get_options()!r}>"
