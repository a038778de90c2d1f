import pytest

from app.core import redis_client
from app.core.config import settings


@pytest.fixture
def configure_redis(monkeypatch):
    def _configure(redis_url="", max_connections=20):
        monkeypatch.setattr(settings, "REDIS_URL", redis_url)
        monkeypatch.setattr(settings, "REDIS_MAX_CONNECTIONS", max_connections)
        monkeypatch.setattr(redis_client, "_async_client", None)

    return _configure


@pytest.mark.parametrize("url", ["", "memory://", "  MEMORY://  "])
def test_get_redis_url_disabled(configure_redis, url):
    configure_redis(redis_url=url)
    assert redis_client.get_redis_url() is None


def test_get_async_client_uses_pool_limit(configure_redis):
    configure_redis(redis_url=" redis://localhost:6379/0 ", max_connections=7)

    client = redis_client.get_async_redis_client()

    assert client is not None
    assert client.connection_pool.max_connections == 7
    assert redis_client.get_async_redis_client() is client


def test_get_async_client_default_pool_limit(configure_redis):
    configure_redis(redis_url="redis://localhost:6379/0", max_connections=0)

    client = redis_client.get_async_redis_client()

    assert client.connection_pool.max_connections == redis_client.DEFAULT_REDIS_MAX_CONNECTIONS


def test_get_async_client_none_when_unset(configure_redis):
    configure_redis()
    assert redis_client.get_async_redis_client() is None


async def test_close_without_client_is_noop(configure_redis):
    configure_redis()
    await redis_client.close_async_redis_client()
    assert redis_client._async_client is None
