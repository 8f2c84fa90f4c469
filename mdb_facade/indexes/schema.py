"""
Schema and index management.

``SchemaAccessor`` is what ``Database.schema`` returns. Its create methods
hand a ``SchemaBuilder`` to a callback, which registers index directives,
and then build it::

    def users_schema(collection):
        collection.index("by_email", {"email": 1}, {"unique": True})
        collection.drop_index("legacy_username")

    await db.schema.create_collection_if_not_exists("users", users_schema)

Obtain a fresh accessor for every operation (``db.schema.<op>(...)``)
instead of holding on to one.
"""

import inspect
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from ..exceptions import InvalidArgument, SchemaAlreadyBuilt
from ..observability import get_logger as get_contextual_logger
from ..observability import record_operation, timed_operation
from .helpers import is_id_index, normalize_keys

if TYPE_CHECKING:
    from ..database.connection import ConnectionHandle

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

SchemaCallback = Callable[["SchemaBuilder"], Any]


@dataclass
class IndexDirective:
    keys: list[tuple[str, Any]]
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.options["name"]


class SchemaBuilder:
    """
    Collects create/drop index directives for one collection.

    ``build()`` applies every create directive in registration order, then
    every drop directive in registration order. It is not atomic: when a
    directive fails, the ones before it stay applied.
    """

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection
        self.create_indexes: list[IndexDirective] = []
        self.drop_indexes: list[str] = []
        self._built = False

    def index(
        self,
        name: str,
        keys: str | Mapping[str, Any] | list[tuple[str, Any]],
        options: Mapping[str, Any] | None = None,
    ) -> "SchemaBuilder":
        """
        Register an index to create.

        Args:
            name: Index name
            keys: Field name, ``{"field": direction}`` mapping or list of pairs
            options: Extra ``create_index`` options (unique, sparse, ...)

        Raises:
            InvalidArgument: If ``name`` or ``keys`` is empty
        """
        if not name:
            raise InvalidArgument("param name is required to create index")
        if not keys:
            raise InvalidArgument(
                "param keys is required to create index", context={"index": name}
            )

        normalized = normalize_keys(keys)
        if is_id_index(normalized):
            logger.warning(
                f"Index '{name}' only targets '_id', which MongoDB indexes automatically"
            )

        self.create_indexes.append(IndexDirective(normalized, {**(options or {}), "name": name}))
        return self

    def drop_index(self, name: str) -> "SchemaBuilder":
        """Register an index to drop by name."""
        if not name:
            raise InvalidArgument("param name is required to drop index")
        self.drop_indexes.append(name)
        return self

    async def build(self) -> list[str]:
        """
        Apply the registered directives.

        Returns:
            Names of the created indexes

        Raises:
            SchemaAlreadyBuilt: If called a second time
            PyMongoError: If a directive fails; earlier ones remain applied
        """
        if self._built:
            raise SchemaAlreadyBuilt(
                "SchemaBuilder was already built",
                context={"collection": self.collection.name},
            )
        self._built = True

        start_time = time.time()
        created: list[str] = []
        try:
            for directive in self.create_indexes:
                created.append(
                    await self.collection.create_index(directive.keys, **directive.options)
                )
                logger.info(f"Created index '{directive.name}' on '{self.collection.name}'")
            for name in self.drop_indexes:
                await self.collection.drop_index(name)
                logger.info(f"Dropped index '{name}' on '{self.collection.name}'")
        except PyMongoError as e:
            record_operation("schema.build", (time.time() - start_time) * 1000, success=False)
            contextual_logger.error(
                "Schema build failed part way; applied directives are kept",
                extra={
                    "collection": self.collection.name,
                    "created_indexes": created,
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        record_operation("schema.build", (time.time() - start_time) * 1000)
        return created


class SchemaAccessor:
    """Collection-level structural operations."""

    def __init__(self, handle: "ConnectionHandle") -> None:
        self._handle = handle

    async def _build(
        self, collection: AsyncIOMotorCollection, callback: SchemaCallback | None
    ) -> list[str]:
        builder = SchemaBuilder(collection)
        if callback is not None:
            result = callback(builder)
            if inspect.isawaitable(result):
                await result
        return await builder.build()

    @timed_operation("schema.create_collection")
    async def create_collection(
        self, collection_name: str, callback: SchemaCallback | None = None
    ) -> list[str]:
        """
        Create a collection and apply the index directives registered by ``callback``.

        Returns:
            Names of the created indexes
        """
        db = await self._handle.ensure_connected()
        collection = await db.create_collection(collection_name)
        logger.info(f"Created collection '{collection_name}'")
        return await self._build(collection, callback)

    async def create_collection_if_not_exists(
        self, collection_name: str, callback: SchemaCallback | None = None
    ) -> list[str] | None:
        """Like ``create_collection`` but returns None when the collection exists."""
        if await self.has_collection(collection_name):
            logger.debug(f"Collection '{collection_name}' already exists; skipping create")
            return None
        return await self.create_collection(collection_name, callback)

    @timed_operation("schema.drop_collection")
    async def drop_collection(self, collection_name: str) -> None:
        db = await self._handle.ensure_connected()
        await db.drop_collection(collection_name)
        logger.info(f"Dropped collection '{collection_name}'")

    async def drop_collection_if_exists(self, collection_name: str) -> bool:
        """Drop the collection if present. Returns True when something was dropped."""
        if not await self.has_collection(collection_name):
            return False
        await self.drop_collection(collection_name)
        return True

    @timed_operation("schema.rename_collection")
    async def rename_collection(self, collection_name: str, target: str) -> None:
        db = await self._handle.ensure_connected()
        await db[collection_name].rename(target)
        logger.info(f"Renamed collection '{collection_name}' to '{target}'")

    async def has_collection(self, collection_name: str) -> bool:
        db = await self._handle.ensure_connected()
        return collection_name in await db.list_collection_names()
