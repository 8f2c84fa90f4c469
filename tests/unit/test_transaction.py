"""
Unit tests for TransactionContext.

Tests session lifecycle, terminal states and the async context manager
with mocked motor sessions.
"""

from unittest.mock import AsyncMock

import pytest
from pymongo.errors import OperationFailure

from mdb_facade.database import TransactionContext, TransactionStatus
from mdb_facade.exceptions import TransactionNotActive, TransactionStartFailed


@pytest.fixture
async def trx(mock_mongo_client):
    return await TransactionContext.begin(mock_mongo_client)


class TestBegin:
    """Test starting transactions."""

    @pytest.mark.asyncio
    async def test_begin_starts_session_and_transaction(self, mock_mongo_client, mock_session):
        trx = await TransactionContext.begin(mock_mongo_client)

        mock_mongo_client.start_session.assert_awaited_once()
        mock_session.start_transaction.assert_called_once_with()
        assert trx.active is True
        assert trx.status is TransactionStatus.ACTIVE
        assert trx.session is mock_session

    @pytest.mark.asyncio
    async def test_begin_forwards_options(self, mock_mongo_client, mock_session):
        await TransactionContext.begin(mock_mongo_client, max_commit_time_ms=500)
        mock_session.start_transaction.assert_called_once_with(max_commit_time_ms=500)

    @pytest.mark.asyncio
    async def test_session_failure_raises_start_failed(self, mock_mongo_client):
        mock_mongo_client.start_session = AsyncMock(
            side_effect=OperationFailure("Transaction numbers are only allowed on a replica set")
        )

        with pytest.raises(TransactionStartFailed) as exc_info:
            await TransactionContext.begin(mock_mongo_client)
        assert isinstance(exc_info.value.__cause__, OperationFailure)

    @pytest.mark.asyncio
    async def test_start_transaction_failure_ends_session(self, mock_mongo_client, mock_session):
        mock_session.start_transaction.side_effect = OperationFailure("not supported")

        with pytest.raises(TransactionStartFailed):
            await TransactionContext.begin(mock_mongo_client)
        mock_session.end_session.assert_awaited_once()


class TestCommitAndRollback:
    """Test terminal operations."""

    @pytest.mark.asyncio
    async def test_commit(self, trx, mock_session):
        await trx.commit()

        mock_session.commit_transaction.assert_awaited_once()
        mock_session.end_session.assert_awaited_once()
        assert trx.status is TransactionStatus.COMMITTED
        assert trx.active is False

    @pytest.mark.asyncio
    async def test_rollback(self, trx, mock_session):
        await trx.rollback()

        mock_session.abort_transaction.assert_awaited_once()
        mock_session.end_session.assert_awaited_once()
        assert trx.status is TransactionStatus.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_commit_twice_raises(self, trx):
        await trx.commit()
        with pytest.raises(TransactionNotActive):
            await trx.commit()

    @pytest.mark.asyncio
    async def test_rollback_after_commit_raises(self, trx):
        await trx.commit()
        with pytest.raises(TransactionNotActive):
            await trx.rollback()

    @pytest.mark.asyncio
    async def test_session_unavailable_after_finish(self, trx):
        await trx.rollback()
        with pytest.raises(TransactionNotActive):
            _ = trx.session

    @pytest.mark.asyncio
    async def test_commit_failure_still_ends_session(self, trx, mock_session):
        mock_session.commit_transaction.side_effect = OperationFailure("write conflict")

        with pytest.raises(OperationFailure):
            await trx.commit()

        mock_session.end_session.assert_awaited_once()
        assert trx.active is False


class TestAsyncContextManager:
    """Test ``async with`` usage."""

    @pytest.mark.asyncio
    async def test_clean_exit_commits(self, trx, mock_session):
        async with trx as active:
            assert active is trx

        mock_session.commit_transaction.assert_awaited_once()
        mock_session.abort_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exception_rolls_back(self, trx, mock_session):
        with pytest.raises(ValueError):
            async with trx:
                raise ValueError("boom")

        mock_session.abort_transaction.assert_awaited_once()
        mock_session.commit_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_finish_inside_block(self, trx, mock_session):
        async with trx:
            await trx.rollback()

        mock_session.abort_transaction.assert_awaited_once()
        mock_session.commit_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cannot_enter_finished_transaction(self, trx):
        await trx.commit()
        with pytest.raises(TransactionNotActive):
            async with trx:
                pass
