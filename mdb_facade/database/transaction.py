"""
Transactions for the database façade.

A ``TransactionContext`` wraps a motor client session with an open
transaction. It is handed to query builders with ``transacting(trx)`` and
finished with ``commit()`` or ``rollback()``; either terminal state ends the
session and rejects further use.

It can also be used as an async context manager, committing when the block
exits cleanly and rolling back when it raises::

    async with await db.begin_transaction() as trx:
        await db.set_collection("users").query().transacting(trx).insert({...})
"""

import enum
import logging
import time
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo.errors import PyMongoError

from ..exceptions import TransactionNotActive, TransactionStartFailed
from ..observability import record_operation

logger = logging.getLogger(__name__)


class TransactionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionContext:
    """An in-flight transaction bound to one client session."""

    def __init__(self, session: AsyncIOMotorClientSession) -> None:
        self._session = session
        self._status = TransactionStatus.ACTIVE

    @classmethod
    async def begin(
        cls, client: AsyncIOMotorClient, **transaction_options: Any
    ) -> "TransactionContext":
        """
        Start a session and a transaction on it.

        Args:
            client: Connected motor client
            **transaction_options: Passed to ``start_transaction``
                (read_concern, write_concern, ...)

        Returns:
            Active TransactionContext

        Raises:
            TransactionStartFailed: If the driver rejects the session or transaction
        """
        start_time = time.time()
        session = None
        try:
            session = await client.start_session()
            session.start_transaction(**transaction_options)
        except PyMongoError as e:
            record_operation("transaction.begin", (time.time() - start_time) * 1000, success=False)
            logger.error(f"Failed to start transaction: {e}", exc_info=True)
            if session is not None:
                await session.end_session()
            raise TransactionStartFailed(
                f"Failed to start transaction: {e}",
                context={"error_type": type(e).__name__},
            ) from e

        record_operation("transaction.begin", (time.time() - start_time) * 1000, success=True)
        logger.debug("Transaction started")
        return cls(session)

    @property
    def status(self) -> TransactionStatus:
        return self._status

    @property
    def active(self) -> bool:
        return self._status is TransactionStatus.ACTIVE

    @property
    def session(self) -> AsyncIOMotorClientSession:
        """
        The session token queries pass to the driver.

        Raises:
            TransactionNotActive: If the transaction already finished
        """
        self._ensure_active("use")
        return self._session

    def _ensure_active(self, action: str) -> None:
        if self._status is not TransactionStatus.ACTIVE:
            raise TransactionNotActive(
                f"Cannot {action} a transaction that is {self._status.value}",
                context={"status": self._status.value},
            )

    async def commit(self) -> None:
        """Commit the transaction and end its session."""
        self._ensure_active("commit")
        await self._finish(
            "commit", self._session.commit_transaction, TransactionStatus.COMMITTED
        )

    async def rollback(self) -> None:
        """Abort the transaction and end its session."""
        self._ensure_active("roll back")
        await self._finish(
            "rollback", self._session.abort_transaction, TransactionStatus.ROLLED_BACK
        )

    async def _finish(self, operation: str, action, status: TransactionStatus) -> None:
        start_time = time.time()
        try:
            await action()
        except PyMongoError:
            record_operation(
                f"transaction.{operation}", (time.time() - start_time) * 1000, success=False
            )
            logger.exception(f"Transaction {operation} failed")
            raise
        finally:
            # The session is unusable once commit/abort was attempted.
            self._status = status
            await self._session.end_session()

        record_operation(f"transaction.{operation}", (time.time() - start_time) * 1000)
        logger.debug(f"Transaction {status.value}")

    async def __aenter__(self) -> "TransactionContext":
        self._ensure_active("enter")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self.active:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    def __repr__(self) -> str:
        return f"<TransactionContext status={self._status.value}>"
