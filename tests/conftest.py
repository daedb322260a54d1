#!/usr/bin/env python3
"""
Pytest configuration and shared fakes for the release notes tests.

The fake API client keeps call counts and can inject failures on chosen
calls, so the resolver, backoff policy and agent can be exercised without
network access.
"""

import threading
import time
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from utils.backoff import BackoffPolicy
from utils.pr_models import AuthorInfo, PullRequestInfo
from utils.rate_limiter import RateLimiter

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeGithubClient:
    """In-memory stand-in for GithubClient.

    ``failures`` maps a commit SHA to a list of exceptions raised, in order,
    by successive list_pull_requests_for_commit calls for that commit.
    """

    def __init__(self, head="H", tag=None, history=None, compare=None, prs_by_commit=None,
                 failures=None, delay_s=0.0, gate=None):
        self.head = head
        self.tag = tag
        self.history = list(history or [])
        self.compare = list(compare or [])
        self.prs_by_commit = dict(prs_by_commit or {})
        self.failures = defaultdict(list, {k: list(v) for k, v in (failures or {}).items()})
        self.delay_s = delay_s
        self.gate = gate
        self.calls = Counter()
        self.pr_calls = Counter()
        self.order = []
        self._lock = threading.Lock()
        self._active = 0
        self.max_active = 0

    def get_head_commit(self, ref=None):
        self.calls["get_head_commit"] += 1
        return self.head

    def get_latest_release_tag(self):
        self.calls["get_latest_release_tag"] += 1
        return self.tag

    def compare_commits(self, base, head):
        self.calls["compare_commits"] += 1
        return list(self.compare)

    def list_commits_since(self, head):
        self.calls["list_commits_since"] += 1
        return list(self.history)

    def list_pull_requests_for_commit(self, sha):
        with self._lock:
            self.calls["list_pull_requests_for_commit"] += 1
            self.pr_calls[sha] += 1
            self.order.append(sha)
            self._active += 1
            self.max_active = max(self.max_active, self._active)
            failure = self.failures[sha].pop(0) if self.failures[sha] else None
        try:
            if failure is not None:
                raise failure
            if self.gate is not None:
                self.gate(sha)
            if self.delay_s:
                time.sleep(self.delay_s)
            return list(self.prs_by_commit.get(sha, []))
        finally:
            with self._lock:
                self._active -= 1


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def make_pr():
    """Factory for PullRequestInfo objects; ``merged_offset_h`` orders merge times."""
    def _make(number, labels=("ios",), merged=True, merged_offset_h=None, title=None, author="octocat"):
        offset = number if merged_offset_h is None else merged_offset_h
        return PullRequestInfo(
            number=number,
            title=title or f"Change {number}",
            url=f"https://github.com/o/r/pull/{number}",
            merged_at=BASE_TIME + timedelta(hours=offset) if merged else None,
            author=AuthorInfo(username=author, url=f"https://github.com/{author}") if author else None,
            labels=frozenset(labels),
        )
    return _make


@pytest.fixture
def sleeps():
    """Records requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def backoff(sleeps):
    """Backoff policy with default schedule, no jitter and no real sleeping."""
    return BackoffPolicy(max_retries=3, initial_delay_s=1.0, multiplier=2.0, max_delay_s=30.0,
                         sleep=sleeps.append, rand=lambda: 0.0)


@pytest.fixture
def rate_limiter():
    limiter = RateLimiter(concurrency_limit=4)
    yield limiter
    limiter.shutdown(wait=True)


@pytest.fixture
def fake_client_cls():
    return FakeGithubClient
