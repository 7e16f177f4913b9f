import pytest
import redis
from unittest.mock import MagicMock

from connector.storage.token_store import MemoryTokenStore, RedisTokenStore


class TestMemoryTokenStore:
    def test_starts_empty(self):
        store = MemoryTokenStore()
        assert store.get() is None

    def test_set_overwrites(self):
        store = MemoryTokenStore()
        store.set("1234")
        store.set("5678")
        assert store.get() == "5678"

    def test_clear_returns_explicit_absence(self):
        store = MemoryTokenStore()
        store.set("1234")
        store.clear()
        assert store.get() is None
        # clearing twice is harmless
        store.clear()
        assert store.get() is None

    def test_empty_string_is_absence(self):
        store = MemoryTokenStore()
        store.set("")
        assert store.get() is None

    def test_default_key_is_token(self):
        assert MemoryTokenStore().key == "token"


class TestRedisTokenStore:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.ping.return_value = True
        client.get.return_value = None
        return client

    def test_get_reads_token_key(self, client):
        client.get.return_value = "1234"
        store = RedisTokenStore(client=client)
        assert store.get() == "1234"
        client.get.assert_called_with("token")

    def test_set_without_ttl(self, client):
        store = RedisTokenStore(client=client, ttl_seconds=0)
        store.set("1234")
        client.set.assert_called_once_with("token", "1234")
        client.setex.assert_not_called()

    def test_set_with_ttl(self, client):
        store = RedisTokenStore(client=client, key="session-token", ttl_seconds=1200)
        store.set("1234")
        client.setex.assert_called_once_with("session-token", 1200, "1234")

    def test_clear_deletes_key(self, client):
        store = RedisTokenStore(client=client)
        store.clear()
        client.delete.assert_called_once_with("token")
        assert store.get() is None

    def test_falls_back_to_memory_when_unreachable(self, client):
        client.ping.side_effect = redis.ConnectionError("down")
        store = RedisTokenStore(client=client)
        assert store.client is None
        store.set("1234")
        assert store.get() == "1234"
        store.clear()
        assert store.get() is None

    def test_set_error_keeps_token_in_memory(self, client):
        client.set.side_effect = redis.RedisError("readonly")
        client.get.side_effect = redis.RedisError("readonly")
        store = RedisTokenStore(client=client, ttl_seconds=0)
        store.set("1234")
        assert store.get() == "1234"


def test_module_docstring_is_kept():
    import connector.storage.token_store as token_store_module

    assert token_store_module.__doc__ is not None
    assert "token" in token_store_module.__doc__
