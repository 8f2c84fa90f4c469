"""
Unit tests for the connection handle.

Tests lazy establishment, single-client guarantees and close semantics
with a mocked AsyncIOMotorClient.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import ConfigurationError, ServerSelectionTimeoutError

from mdb_facade.config import ConnectionDescriptor
from mdb_facade.database.connection import ConnectionHandle
from mdb_facade.exceptions import ConnectionClosed, InitializationError
from mdb_facade.observability import get_metrics_collector


@pytest.fixture
def descriptor(connection_config):
    return ConnectionDescriptor.from_config(connection_config)


@pytest.fixture
def handle(descriptor, motor_client_factory):
    return ConnectionHandle(descriptor)


class TestLazyConnection:
    """Test that the client is created on first use only."""

    def test_no_client_on_construction(self, handle, motor_client_factory):
        assert handle.connected is False
        motor_client_factory.assert_not_called()

    def test_client_before_connect_raises(self, handle):
        with pytest.raises(RuntimeError, match="not established"):
            _ = handle.client

    @pytest.mark.asyncio
    async def test_first_call_connects(self, handle, motor_client_factory, mock_mongo_client):
        db = await handle.ensure_connected()

        assert db is mock_mongo_client["test_db"]
        assert handle.connected is True
        assert handle.client is mock_mongo_client
        motor_client_factory.assert_called_once()
        args, kwargs = motor_client_factory.call_args
        assert args[0] == "mongodb://localhost:27017/test_db"
        assert kwargs["appname"] == "MDB_FACADE"
        mock_mongo_client.admin.command.assert_awaited_once_with("ping")

    @pytest.mark.asyncio
    async def test_repeated_calls_reuse_client(self, handle, motor_client_factory):
        first = await handle.ensure_connected()
        for _ in range(5):
            assert await handle.ensure_connected() is first
        motor_client_factory.assert_called_once()

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_share_one_client(
        self, handle, motor_client_factory, mock_mongo_client
    ):
        ping_started = asyncio.Event()
        release = asyncio.Event()

        async def slow_ping(*args, **kwargs):
            ping_started.set()
            await release.wait()
            return {"ok": 1}

        mock_mongo_client.admin.command = AsyncMock(side_effect=slow_ping)

        tasks = [asyncio.ensure_future(handle.ensure_connected()) for _ in range(10)]
        await ping_started.wait()
        release.set()
        results = await asyncio.gather(*tasks)

        assert all(result is results[0] for result in results)
        motor_client_factory.assert_called_once()

    @pytest.mark.asyncio
    async def test_driver_options_override_defaults(self, descriptor, motor_client_factory):
        handle = ConnectionHandle(descriptor, maxPoolSize=5, directConnection=True)
        await handle.ensure_connected()

        _, kwargs = motor_client_factory.call_args
        assert kwargs["maxPoolSize"] == 5
        assert kwargs["directConnection"] is True
        assert kwargs["retryWrites"] is True

    @pytest.mark.asyncio
    async def test_records_establish_metric(self, handle):
        await handle.ensure_connected()
        metrics = get_metrics_collector().get_metrics("connection.establish")["metrics"]
        assert metrics["connection.establish"]["count"] == 1
        assert metrics["connection.establish"]["error_count"] == 0


class TestConnectionFailure:
    """Test failed establishment."""

    @pytest.mark.asyncio
    async def test_ping_failure_raises_initialization_error(self, handle, mock_mongo_client):
        mock_mongo_client.admin.command = AsyncMock(
            side_effect=ServerSelectionTimeoutError("no servers")
        )

        with pytest.raises(InitializationError) as exc_info:
            await handle.ensure_connected()

        assert exc_info.value.db_name == "test_db"
        assert isinstance(exc_info.value.__cause__, ServerSelectionTimeoutError)
        mock_mongo_client.close.assert_called_once()
        assert handle.connected is False

    @pytest.mark.asyncio
    async def test_failure_can_be_retried(self, handle, motor_client_factory, mock_mongo_client):
        mock_mongo_client.admin.command = AsyncMock(
            side_effect=[ServerSelectionTimeoutError("no servers"), {"ok": 1}]
        )

        with pytest.raises(InitializationError):
            await handle.ensure_connected()
        db = await handle.ensure_connected()

        assert db is mock_mongo_client["test_db"]
        assert motor_client_factory.call_count == 2

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, handle, mock_mongo_client):
        mock_mongo_client.admin.command = AsyncMock(
            side_effect=ServerSelectionTimeoutError("no servers")
        )
        with pytest.raises(InitializationError):
            await handle.ensure_connected()

        metrics = get_metrics_collector().get_metrics("connection.establish")["metrics"]
        assert metrics["connection.establish"]["error_count"] == 1

    @pytest.mark.asyncio
    async def test_password_not_in_error(self, connection_config, motor_client_factory):
        connection_config["connection"].update(user="app", password="secret")
        handle = ConnectionHandle(ConnectionDescriptor.from_config(connection_config))
        motor_client_factory.return_value.admin.command = AsyncMock(
            side_effect=ServerSelectionTimeoutError("no servers")
        )

        with pytest.raises(InitializationError) as exc_info:
            await handle.ensure_connected()
        assert "secret" not in exc_info.value.mongo_uri

    @pytest.mark.asyncio
    async def test_configuration_error_is_wrapped_and_retryable(
        self, handle, motor_client_factory, mock_mongo_client
    ):
        motor_client_factory.side_effect = [ConfigurationError("bad option"), mock_mongo_client]

        with pytest.raises(InitializationError) as exc_info:
            await handle.ensure_connected()
        assert isinstance(exc_info.value.__cause__, ConfigurationError)

        assert await handle.ensure_connected() is mock_mongo_client["test_db"]
        assert motor_client_factory.call_count == 2


class TestClose:
    """Test closing the handle."""

    @pytest.mark.asyncio
    async def test_close_releases_client(self, handle, mock_mongo_client):
        await handle.ensure_connected()
        await handle.close()

        mock_mongo_client.close.assert_called_once()
        assert handle.closed is True
        assert handle.connected is False

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, handle, mock_mongo_client):
        await handle.ensure_connected()
        await handle.close()
        await handle.close()
        mock_mongo_client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_without_connecting(self, handle, motor_client_factory):
        await handle.close()
        motor_client_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_ensure_connected_after_close_raises(self, handle):
        await handle.ensure_connected()
        await handle.close()

        with pytest.raises(ConnectionClosed):
            await handle.ensure_connected()
        with pytest.raises(ConnectionClosed):
            _ = handle.client

    @pytest.mark.asyncio
    async def test_close_during_connect(self, handle, mock_mongo_client):
        ping_started = asyncio.Event()
        release = asyncio.Event()

        async def slow_ping(*args, **kwargs):
            ping_started.set()
            await release.wait()
            return {"ok": 1}

        mock_mongo_client.admin.command = AsyncMock(side_effect=slow_ping)

        task = asyncio.ensure_future(handle.ensure_connected())
        await ping_started.wait()
        await handle.close()
        release.set()

        with pytest.raises(ConnectionClosed):
            await task
        mock_mongo_client.close.assert_called_once()
