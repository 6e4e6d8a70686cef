"""Tests for key_pool.py."""

from __future__ import annotations

import pytest

from skkn_writer.key_pool import ApiKeyPool, mask_key
from skkn_writer.session import API_KEY_STORAGE_KEY, FileKeyValueStore


class TestApiKeyPool:
    def test_keys_deduplicated_and_stripped(self):
        pool = ApiKeyPool([" k1-xxxxxxx ", "k1-xxxxxxx", "", "k2-yyyyyyy"])
        assert len(pool) == 2
        assert pool.get_active_key() == "k1-xxxxxxx"

    def test_empty_pool(self):
        pool = ApiKeyPool([])
        assert pool.get_active_key() is None
        assert pool.rotate_to_next_key("manual").success is False

    def test_rotation_skips_errored_keys(self):
        pool = ApiKeyPool(["a-key-0001", "b-key-0002", "c-key-0003"])
        pool.mark_key_error("b-key-0002", "RATE_LIMIT")
        result = pool.mark_key_error("a-key-0001", "QUOTA_EXCEEDED")
        assert result.success
        assert result.new_key == "c-key-0003"
        assert "3/3" in result.message

    def test_all_keys_failed(self):
        pool = ApiKeyPool(["a-key-0001", "b-key-0002"])
        pool.mark_key_error("a-key-0001", "QUOTA_EXCEEDED")
        result = pool.mark_key_error("b-key-0002", "QUOTA_EXCEEDED")
        assert not result.success
        assert pool.get_active_key() is None

    def test_undecodable_saved_key_is_ignored(self, tmp_path):
        (tmp_path / API_KEY_STORAGE_KEY).write_bytes(b"\xff\xfe")
        pool = ApiKeyPool(["a-key-0001"], store=FileKeyValueStore(tmp_path))
        assert pool.get_active_key() == "a-key-0001"

    def test_unknown_key_is_rejected(self):
        pool = ApiKeyPool(["a-key-0001"])
        assert pool.mark_key_error("zzz", "RATE_LIMIT").success is False

    def test_reset_restores_first_key(self):
        pool = ApiKeyPool(["a-key-0001", "b-key-0002"])
        pool.mark_key_error("a-key-0001", "QUOTA_EXCEEDED")
        pool.reset_all_keys()
        assert pool.get_active_key() == "a-key-0001"
        assert all(s.healthy for s in pool.statuses())

    def test_active_key_persisted(self, memory_store):
        pool = ApiKeyPool(["a-key-0001", "b-key-0002"], store=memory_store)
        pool.rotate_to_next_key("manual")
        assert memory_store.data[API_KEY_STORAGE_KEY] == "b-key-0002"

        reloaded = ApiKeyPool(["a-key-0001", "b-key-0002"], store=memory_store)
        assert reloaded.get_active_key() == "b-key-0002"

    def test_saved_key_outside_pool_is_added(self, memory_store):
        memory_store.data[API_KEY_STORAGE_KEY] = "saved-key-9999"
        pool = ApiKeyPool(["a-key-0001"], store=memory_store)
        assert pool.get_active_key() == "saved-key-9999"
        assert len(pool) == 2

    def test_use_key_clears_error(self):
        pool = ApiKeyPool(["a-key-0001", "b-key-0002"])
        pool.mark_key_error("a-key-0001", "QUOTA_EXCEEDED")
        pool.use_key("a-key-0001")
        assert pool.get_active_key() == "a-key-0001"

    def test_use_key_rejects_blank(self):
        with pytest.raises(ValueError):
            ApiKeyPool([]).use_key("   ")

    def test_persist_failure_is_logged(self, memory_store):
        pool = ApiKeyPool(["a-key-0001", "b-key-0002"], store=memory_store)
        memory_store.fail_writes = True
        assert pool.rotate_to_next_key("manual").success


class TestMaskKey:
    def test_long_key(self):
        assert mask_key("AIzaSyDUMMY1234abcd") == "AIza...abcd"

    def test_short_key_fully_hidden(self):
        assert mask_key("short") == "*****"
