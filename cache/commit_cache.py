#!/usr/bin/env python3
"""Persistent commit -> pull request cache.

Entries are scoped by (schema_version, owner, repo). Every pull request stored
under a commit already passed the qualifying filter when it was written, so a
cache hit is used as-is. Cache failures never fail a run: they are logged and
treated as a miss or a skipped save.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from cache.cache_backend import CacheStore, FileCacheStore
from configs.config import Config
from utils.pr_models import PullRequestInfo

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """Commit -> qualifying pull requests, plus identity and freshness metadata."""

    schema_version: str
    owner: str
    repo: str
    commit_to_prs: Dict[str, List[PullRequestInfo]] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=_utcnow)

    def merged_with(self, new_entries: Dict[str, List[PullRequestInfo]]) -> "CacheEntry":
        """Return a copy containing these entries plus ``new_entries`` (new wins per commit)."""
        merged = dict(self.commit_to_prs)
        merged.update(new_entries)
        return self.model_copy(update={"commit_to_prs": merged, "last_updated": _utcnow()})


class CommitCache:
    """Loads, saves and queries the commit cache for one schema version."""

    def __init__(self, store: Optional[CacheStore] = None, schema_version: Optional[str] = None) -> None:
        self.store = store if store is not None else FileCacheStore()
        self.schema_version = schema_version or Config.CACHE_SCHEMA_VERSION

    def cache_key(self, owner: str, repo: str) -> str:
        return f"release-notes-{self.schema_version}-{owner}-{repo}"

    def empty_entry(self, owner: str, repo: str) -> CacheEntry:
        return CacheEntry(schema_version=self.schema_version, owner=owner, repo=repo)

    def load(self, owner: str, repo: str) -> Optional[CacheEntry]:
        """Load the cache entry for ``owner/repo``.

        Returns:
            The entry, or None on a miss, identity mismatch or any load failure
        """
        key = self.cache_key(owner, repo)
        try:
            raw = self.store.restore(key)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to load PR cache {key}: {e}")
            return None
        if raw is None:
            logger.info("No PR cache found, starting fresh")
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Ignoring malformed PR cache {key}: {e}")
            return None

        if (entry.schema_version, entry.owner, entry.repo) != (self.schema_version, owner, repo):
            logger.warning(
                f"PR cache {key} belongs to {entry.schema_version}/{entry.owner}/{entry.repo}, ignoring it"
            )
            return None

        logger.info(f"Loaded {len(entry.commit_to_prs)} cached commit-to-PR mappings")
        return entry

    def save(self, owner: str, repo: str, entry: CacheEntry) -> None:
        """Merge ``entry`` into the persisted cache for ``owner/repo``.

        Previously persisted commits are kept; ``last_updated`` is overwritten.
        Failures are logged and the save is skipped.
        """
        key = self.cache_key(owner, repo)
        existing = self.load(owner, repo) or self.empty_entry(owner, repo)
        merged = existing.merged_with(entry.commit_to_prs)
        try:
            payload = merged.model_dump_json().encode("utf-8")
            self.store.persist(key, payload)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to save PR cache {key}: {e}")
            return
        logger.info(f"Saved {len(merged.commit_to_prs)} commit-to-PR mappings to cache")

    def invalidate(self, owner: str, repo: str) -> None:
        key = self.cache_key(owner, repo)
        invalidate = getattr(self.store, "invalidate", None)
        if invalidate is None:
            return
        try:
            invalidate(key)
            logger.info(f"Invalidated PR cache {key}")
        except OSError as e:
            logger.warning(f"Failed to invalidate PR cache {key}: {e}")

    @staticmethod
    def partition(
        commits: Iterable[str], entry: Optional[CacheEntry]
    ) -> Tuple[List[str], Dict[str, List[PullRequestInfo]]]:
        """Split commits into those needing a fetch and those already cached.

        Returns:
            (uncached commit SHAs in input order, cached commit -> pull requests)
        """
        if entry is None:
            return list(commits), {}
        uncached: List[str] = []
        cached: Dict[str, List[PullRequestInfo]] = {}
        for sha in commits:
            if sha in entry.commit_to_prs:
                cached[sha] = entry.commit_to_prs[sha]
            else:
                uncached.append(sha)
        return uncached, cached
