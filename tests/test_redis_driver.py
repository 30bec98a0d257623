from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError

from lockpool import RedisLockDriver, ResourcePool, ResourcePoolConfigError


@pytest.fixture
def redis_client(monkeypatch: pytest.MonkeyPatch) -> Redis:
    client = Redis()
    monkeypatch.setattr(client, "set", AsyncMock(return_value=True))
    monkeypatch.setattr(client, "delete", AsyncMock(return_value=1))
    monkeypatch.setattr(client, "aclose", AsyncMock())
    return client


@pytest.mark.asyncio
async def test_lock_uses_set_nx_px(redis_client: Redis):
    driver = RedisLockDriver(redis_client, key_prefix="pool:")
    assert await driver.lock("api-key-1", 1500) is True
    redis_client.set.assert_awaited_once_with("pool:api-key-1", "1", px=1500, nx=True)


@pytest.mark.asyncio
async def test_fractional_ttl_is_rounded_up(redis_client: Redis):
    driver = RedisLockDriver(redis_client)
    await driver.lock("k", 0.2)
    assert redis_client.set.await_args.kwargs["px"] == 1


@pytest.mark.asyncio
async def test_lock_returns_false_when_key_exists(redis_client: Redis):
    redis_client.set.return_value = None
    driver = RedisLockDriver(redis_client)
    assert await driver.lock("k", 1000) is False


@pytest.mark.asyncio
async def test_unlock_deletes_and_acknowledges_missing_keys(redis_client: Redis):
    driver = RedisLockDriver(redis_client, key_prefix="pool:")
    assert await driver.unlock("k") is True
    redis_client.delete.return_value = 0
    assert await driver.unlock("k") is True
    assert redis_client.delete.await_count == 2
    redis_client.delete.assert_awaited_with("pool:k")


@pytest.mark.asyncio
async def test_backend_errors_propagate(redis_client: Redis):
    redis_client.set.side_effect = RedisConnectionError("connection refused")
    pool = ResourcePool(driver=RedisLockDriver(redis_client), resources=["a"], key=str, expires=1000)
    with pytest.raises(RedisConnectionError):
        await pool.acquire(timeout=1000)


@pytest.mark.asyncio
async def test_invalid_ttl_never_reaches_redis(redis_client: Redis):
    driver = RedisLockDriver(redis_client)
    with pytest.raises(ResourcePoolConfigError):
        await driver.lock("k", 0)
    redis_client.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_connection_mapping_builds_an_owned_client():
    with patch("lockpool.rediscache.Redis") as redis_cls:
        instance = AsyncMock()
        redis_cls.return_value = instance
        driver = RedisLockDriver({"host": "localhost", "port": 6379, "db": 0})
        redis_cls.assert_called_once_with(host="localhost", port=6379, db=0)
        await driver.aclose()
        instance.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_given_client_is_not_closed(redis_client: Redis):
    driver = RedisLockDriver(redis_client)
    await driver.aclose()
    redis_client.aclose.assert_not_awaited()


def test_invalid_connection_is_rejected():
    with pytest.raises(AttributeError):
        RedisLockDriver("redis://localhost")
