"""Tests for the Redis adapter against a mocked client."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from trustgate.storage.errors import BackendUnavailable
from trustgate.storage.redis_backend import RedisBackend


@pytest.fixture
def client():
    client = MagicMock()
    for name in (
        "get", "set", "delete", "exists", "incr", "expire", "ttl",
        "sadd", "srem", "smembers", "scard", "ping", "aclose",
    ):
        setattr(client, name, AsyncMock())
    return client


@pytest.fixture
def redis_backend(client):
    return RedisBackend("redis://localhost:6379/0", client=client)


class TestCommands:
    async def test_set_forwards_expiry_and_xx(self, redis_backend, client):
        client.set.return_value = True

        assert await redis_backend.set("k", "v", ex=30, xx=True) is True
        client.set.assert_awaited_once_with("k", "v", ex=30, xx=True)

    async def test_set_xx_miss_returns_false(self, redis_backend, client):
        client.set.return_value = None
        assert await redis_backend.set("k", "v", xx=True) is False

    async def test_results_are_coerced(self, redis_backend, client):
        client.exists.return_value = 1
        client.incr.return_value = 3
        client.smembers.return_value = ["a", "b"]

        assert await redis_backend.exists("k") is True
        assert await redis_backend.incr("k") == 3
        assert await redis_backend.smembers("s") == {"a", "b"}

    async def test_delete_without_keys_skips_round_trip(self, redis_backend, client):
        assert await redis_backend.delete() == 0
        client.delete.assert_not_called()

    async def test_pipeline_queues_then_executes(self, redis_backend, client):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[True, 1])
        client.pipeline.return_value = pipe

        batch = redis_backend.pipeline()
        batch.set("k", "v", ex=10).sadd("s", "m")
        results = await batch.execute()

        pipe.set.assert_called_once_with("k", "v", ex=10)
        pipe.sadd.assert_called_once_with("s", "m")
        assert results == [True, 1]

    async def test_close_releases_pool(self, redis_backend, client):
        await redis_backend.close()
        client.aclose.assert_awaited_once()


class TestErrorTranslation:
    @pytest.mark.parametrize(
        "exc", [RedisConnectionError("refused"), RedisTimeoutError("timed out"), OSError("reset")]
    )
    async def test_client_errors_become_backend_unavailable(self, redis_backend, client, exc):
        client.get.side_effect = exc

        with patch("trustgate.storage.redis_backend.logger") as mock_logger:
            with pytest.raises(BackendUnavailable) as exc_info:
                await redis_backend.get("k")

        assert exc_info.value.operation == "get"
        assert exc_info.value.__cause__ is exc
        mock_logger.error.assert_called_once()

    async def test_pipeline_failure_is_translated(self, redis_backend, client):
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=RedisConnectionError("down"))
        client.pipeline.return_value = pipe

        with pytest.raises(BackendUnavailable) as exc_info:
            await redis_backend.pipeline().delete("k").execute()
        assert exc_info.value.operation == "pipeline"

    def test_verify_connection_failure(self):
        sync_client = MagicMock()
        sync_client.ping.side_effect = RedisConnectionError("refused")
        backend = RedisBackend("redis://localhost:6379/0", client=MagicMock())

        with patch("trustgate.storage.redis_backend.Redis.from_url", return_value=sync_client):
            with pytest.raises(BackendUnavailable):
                backend.verify_connection()
        sync_client.close.assert_called_once()
