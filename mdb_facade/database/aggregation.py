"""
Aggregation helpers for the database façade.

Turns a reducer name (count, max, min, sum, avg) plus an optional field and
group key into a ``$match``/``$group`` pipeline and unwraps the result.
"""

import logging
import math
import time
from collections.abc import Mapping
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from ..constants import AGGREGATOR_COUNT, FIELD_AGGREGATORS, SUPPORTED_AGGREGATORS
from ..exceptions import InvalidArgument
from ..observability import record_operation
from .transaction import TransactionContext

logger = logging.getLogger(__name__)


def build_pipeline(
    conditions: Mapping[str, Any],
    aggregator: str,
    key: str | None = None,
    group_by: str | None = None,
) -> list[dict[str, Any]]:
    """
    Build the two-stage pipeline for ``aggregator``.

    Args:
        conditions: Filter document used for the ``$match`` stage
        aggregator: One of count, max, min, sum, avg
        key: Field to reduce (required by max, min, sum, avg)
        group_by: Field to group on; all documents form one group when None

    Returns:
        ``[{"$match": ...}, {"$group": ...}]``

    Raises:
        InvalidArgument: If a field reducer is requested without ``key``
    """
    group: dict[str, Any] = {"_id": f"${group_by}" if group_by else None}

    if aggregator == AGGREGATOR_COUNT:
        group[aggregator] = {"$sum": 1}
    elif aggregator in FIELD_AGGREGATORS:
        if not key:
            raise InvalidArgument(
                f"Aggregator '{aggregator}' requires a key",
                context={"aggregator": aggregator},
            )
        group[aggregator] = {f"${aggregator}": f"${key}"}
    else:
        logger.warning(
            f"Unknown aggregator '{aggregator}'; expected one of {SUPPORTED_AGGREGATORS}. "
            f"The group stage will carry no reducer."
        )

    return [{"$match": dict(conditions)}, {"$group": group}]


def unwrap_result(
    result: list[dict[str, Any]], aggregator: str, group_by: str | None = None
) -> Any:
    """Grouped results are returned as-is; otherwise the first group's value or None."""
    if group_by:
        return result
    if not result:
        return None
    return result[0].get(aggregator)


def make_paginate_meta(total: int | None, page: int, per_page: int) -> dict[str, Any]:
    total = total or 0
    return {
        "total": total,
        "per_page": per_page,
        "page": page,
        "last_page": math.ceil(total / per_page) if per_page else 0,
    }


class AggregationEngine:
    """Runs reducer pipelines against one collection."""

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        transaction: TransactionContext | None = None,
    ) -> None:
        self._collection = collection
        self._transaction = transaction

    async def aggregate(
        self,
        conditions: Mapping[str, Any],
        aggregator: str,
        key: str | None = None,
        group_by: str | None = None,
    ) -> Any:
        """
        Run ``aggregator`` over documents matching ``conditions``.

        Returns:
            The grouped result list when ``group_by`` is given, otherwise the
            scalar reducer value, or None when nothing matched.
        """
        pipeline = build_pipeline(conditions, aggregator, key, group_by)
        kwargs = {}
        if self._transaction is not None:
            kwargs["session"] = self._transaction.session

        collection_name = getattr(self._collection, "name", None)
        logger.debug(f"aggregate '{aggregator}' on '{collection_name}': {pipeline}")

        start_time = time.time()
        try:
            cursor = self._collection.aggregate(pipeline, **kwargs)
            result = await cursor.to_list(length=None)
        except PyMongoError:
            record_operation(
                "aggregate.run",
                (time.time() - start_time) * 1000,
                success=False,
                aggregator=aggregator,
            )
            logger.exception(f"Aggregation '{aggregator}' failed on '{collection_name}'")
            raise

        record_operation(
            "aggregate.run", (time.time() - start_time) * 1000, aggregator=aggregator
        )
        return unwrap_result(result, aggregator, group_by)
