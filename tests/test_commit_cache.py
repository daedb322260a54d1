#!/usr/bin/env python3
"""
Unit tests for the commit cache and its stores.
"""

import json
import logging
import os
from unittest.mock import Mock

import pytest

from cache.cache_backend import FileCacheStore, MemoryCacheStore
from cache.commit_cache import CacheEntry, CommitCache


@pytest.fixture
def store():
    return MemoryCacheStore()


@pytest.fixture
def commit_cache(store):
    return CommitCache(store, schema_version="v1")


def entry_with(commit_cache, mapping, owner="o", repo="r"):
    return commit_cache.empty_entry(owner, repo).merged_with(mapping)


# ============================================================================
# load / save
# ============================================================================

class TestLoadSave:

    def test_load_miss_returns_none(self, commit_cache):
        assert commit_cache.load("o", "r") is None

    def test_saved_entries_are_loaded_back(self, commit_cache, make_pr):
        pr = make_pr(101, labels=("ios", "feature"))
        commit_cache.save("o", "r", entry_with(commit_cache, {"c1": [pr], "c2": []}))

        loaded = commit_cache.load("o", "r")

        assert loaded is not None
        assert loaded.commit_to_prs == {"c1": [pr], "c2": []}
        assert loaded.commit_to_prs["c1"][0].labels == frozenset({"ios", "feature"})

    def test_save_merges_without_removing(self, commit_cache, make_pr):
        commit_cache.save("o", "r", entry_with(commit_cache, {"c1": [make_pr(1)]}))
        commit_cache.save("o", "r", entry_with(commit_cache, {"c2": [make_pr(2)]}))

        loaded = commit_cache.load("o", "r")

        assert set(loaded.commit_to_prs) == {"c1", "c2"}

    def test_save_overwrites_last_updated(self, commit_cache, make_pr):
        commit_cache.save("o", "r", entry_with(commit_cache, {"c1": []}))
        first = commit_cache.load("o", "r").last_updated

        commit_cache.save("o", "r", entry_with(commit_cache, {"c2": []}))
        second = commit_cache.load("o", "r").last_updated

        assert second >= first

    def test_caches_are_scoped_by_repository(self, commit_cache):
        commit_cache.save("o", "r", entry_with(commit_cache, {"c1": []}))

        assert commit_cache.load("o", "other") is None
        assert commit_cache.load("someone", "r") is None

    def test_schema_version_mismatch_is_a_miss(self, store):
        CommitCache(store, schema_version="v1").save("o", "r", CacheEntry(schema_version="v1", owner="o", repo="r"))

        assert CommitCache(store, schema_version="v2").load("o", "r") is None

    def test_identity_mismatch_under_same_key_is_a_miss(self, store, commit_cache):
        foreign = CacheEntry(schema_version="v1", owner="x", repo="y", commit_to_prs={"c1": []})
        store.persist(commit_cache.cache_key("o", "r"), foreign.model_dump_json().encode("utf-8"))

        assert commit_cache.load("o", "r") is None


# ============================================================================
# Failure tolerance
# ============================================================================

class TestFailures:

    def test_malformed_data_is_a_miss(self, store, commit_cache, caplog):
        store.persist(commit_cache.cache_key("o", "r"), b"{not json")

        with caplog.at_level(logging.WARNING, logger="cache.commit_cache"):
            assert commit_cache.load("o", "r") is None
        assert any("malformed" in r.getMessage() for r in caplog.records)

    def test_wrong_shape_is_a_miss(self, store, commit_cache):
        payload = json.dumps({"schema_version": "v1", "owner": "o", "repo": "r", "commit_to_prs": {"c1": "nope"}})
        store.persist(commit_cache.cache_key("o", "r"), payload.encode("utf-8"))

        assert commit_cache.load("o", "r") is None

    def test_unavailable_store_on_load_is_a_miss(self, caplog):
        broken = Mock()
        broken.restore.side_effect = OSError("disk gone")

        with caplog.at_level(logging.WARNING, logger="cache.commit_cache"):
            assert CommitCache(broken).load("o", "r") is None
        assert any("Failed to load" in r.getMessage() for r in caplog.records)

    def test_failed_save_is_skipped(self, caplog):
        broken = Mock()
        broken.restore.return_value = None
        broken.persist.side_effect = OSError("read-only")
        commit_cache = CommitCache(broken)

        with caplog.at_level(logging.WARNING, logger="cache.commit_cache"):
            commit_cache.save("o", "r", commit_cache.empty_entry("o", "r"))
        assert any("Failed to save" in r.getMessage() for r in caplog.records)


# ============================================================================
# partition
# ============================================================================

class TestPartition:

    def test_without_cache_everything_is_uncached(self):
        uncached, cached = CommitCache.partition(["a", "b"], None)
        assert uncached == ["a", "b"]
        assert cached == {}

    def test_splits_cached_and_uncached(self, commit_cache, make_pr):
        pr = make_pr(7)
        entry = entry_with(commit_cache, {"b": [pr], "d": []})

        uncached, cached = CommitCache.partition(["a", "b", "c", "d"], entry)

        assert uncached == ["a", "c"]
        assert cached == {"b": [pr], "d": []}


# ============================================================================
# FileCacheStore
# ============================================================================

class TestFileCacheStore:

    def test_persists_atomically_to_disk(self, tmp_path, make_pr):
        file_store = FileCacheStore(root_dir=str(tmp_path / "cache"))
        commit_cache = CommitCache(file_store, schema_version="v1")

        commit_cache.save("o", "r", entry_with(commit_cache, {"c1": [make_pr(3)]}))

        files = os.listdir(tmp_path / "cache")
        assert files == ["release-notes-v1-o-r.json"]
        assert commit_cache.load("o", "r").commit_to_prs["c1"][0].number == 3

    def test_restore_missing_key(self, tmp_path):
        assert FileCacheStore(root_dir=str(tmp_path)).restore("absent") is None

    def test_invalidate_removes_file(self, tmp_path):
        file_store = FileCacheStore(root_dir=str(tmp_path))
        commit_cache = CommitCache(file_store, schema_version="v1")
        commit_cache.save("o", "r", commit_cache.empty_entry("o", "r"))

        commit_cache.invalidate("o", "r")

        assert commit_cache.load("o", "r") is None
