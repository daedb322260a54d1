#!/usr/bin/env python3
"""Resolve the qualifying pull requests for a commit range.

The resolver lists the commits of a range, serves what it can from the
commit cache, fetches the rest concurrently through the rate limiter and
folds the results into a map keyed by pull request number.

Every attempt of a per-commit fetch is its own rate limiter job. When an
attempt fails transiently the backoff delay is slept outside the limiter,
and the retry is queued behind whatever was already waiting. Workers only
return values; folding happens on the calling thread after every fetch has
completed.
"""

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

from cache.commit_cache import CacheEntry, CommitCache
from utils import metrics
from utils.backoff import BackoffPolicy
from utils.pr_models import CommitRange, PullRequestInfo, QualifyingFilter, ResolutionResult
from utils.rate_limiter import RateLimiter

# Set up logging
logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Raised when resolution fails; carries the label of the failing operation."""

    def __init__(self, message: str, context: str, code: str = "UNKNOWN") -> None:
        super().__init__(message)
        self.context = context
        self.code = code


class _AttemptQueue:
    """Limiter jobs created by one resolve call, so a failure abandons only those."""

    def __init__(self, rate_limiter: RateLimiter) -> None:
        self.rate_limiter = rate_limiter
        self._lock = threading.Lock()
        self._futures: List[Future] = []
        self._aborted = False

    def schedule(self, operation: Callable) -> Future:
        with self._lock:
            if self._aborted:
                raise CancelledError("resolution aborted")
            future = self.rate_limiter.schedule(operation)
            self._futures.append(future)
        return future

    def abort(self) -> int:
        with self._lock:
            self._aborted = True
            futures = list(self._futures)
        return self.rate_limiter.cancel_pending(futures)


class PRResolver:
    """Discovers the pull requests associated with every commit in a range."""

    def __init__(self, client, rate_limiter: RateLimiter, backoff: Optional[BackoffPolicy] = None):
        """Initialize the resolver.

        Args:
            client: API client exposing compare_commits, list_commits_since and
                list_pull_requests_for_commit
            rate_limiter: Limiter bounding concurrent per-commit fetches
            backoff: Retry policy applied to every individual API call
        """
        self.client = client
        self.rate_limiter = rate_limiter
        self.backoff = backoff or BackoffPolicy.from_config()

    def call(self, operation: Callable, context: str, retry: bool = True):
        """Run one API call, wrapping any failure in ResolutionError.

        With ``retry`` the call runs under the backoff policy. Pass False for
        client methods that already retry each of their own requests.
        """
        try:
            if not retry:
                return operation()
            return self.backoff.execute(operation, context)
        except Exception as e:
            raise ResolutionError(f"[{context}] {e}", context=context, code=getattr(e, "code", "UNKNOWN")) from e

    def list_commits(self, commit_range: CommitRange) -> List[str]:
        # Listing is paginated; the client retries page by page
        if commit_range.base is None:
            logger.info(f"No previous release, scanning full history up to {commit_range.head}")
            return self.call(lambda: self.client.list_commits_since(commit_range.head), "listCommits", retry=False)
        context = f"compareCommits {commit_range.base}...{commit_range.head}"
        return self.call(lambda: self.client.compare_commits(commit_range.base, commit_range.head), context,
                         retry=False)

    def _fetch_one(self, sha: str, operation: Callable, first: Future, attempts: _AttemptQueue):
        """Drive the attempts for one commit; the first one is already queued."""
        queued = [first]

        def run_attempt(op):
            future = queued.pop() if queued else attempts.schedule(op)
            return future.result()

        return self.backoff.execute(operation, f"listPullRequests {sha}", run_attempt=run_attempt)

    def _fetch_uncached(self, uncached: List[str]) -> Dict[str, List[PullRequestInfo]]:
        """Fetch pull requests for each commit, failing fast on the first terminal error."""
        attempts = _AttemptQueue(self.rate_limiter)
        operations = {sha: (lambda sha=sha: self.client.list_pull_requests_for_commit(sha)) for sha in uncached}
        # Queue every first attempt up front, in commit order
        first_attempts = {sha: attempts.schedule(operations[sha]) for sha in uncached}

        drivers = ThreadPoolExecutor(max_workers=self.rate_limiter.concurrency_limit,
                                     thread_name_prefix=f"{self.rate_limiter.name}-backoff")
        try:
            futures: Dict[Future, str] = {
                drivers.submit(self._fetch_one, sha, operations[sha], first_attempts[sha], attempts): sha
                for sha in uncached
            }
            fetched: Dict[str, List[PullRequestInfo]] = {}
            for future in as_completed(futures):
                sha = futures[future]
                try:
                    fetched[sha] = future.result()
                except Exception as e:
                    attempts.abort()
                    context = f"listPullRequests {sha}"
                    logger.error(f"Failed to fetch pull requests for commit {sha}: {e}")
                    raise ResolutionError(f"[{context}] {e}", context=context,
                                          code=getattr(e, "code", "UNKNOWN")) from e
                logger.debug(f"✓ Fetched {len(fetched[sha])} pull requests for {sha}")
            return fetched
        finally:
            drivers.shutdown(wait=False, cancel_futures=True)

    def resolve(
        self,
        commit_range: CommitRange,
        qualifying_filter: QualifyingFilter,
        cache: Optional[CacheEntry] = None,
    ) -> ResolutionResult:
        """Resolve the deduplicated qualifying pull requests for ``commit_range``.

        Args:
            commit_range: Range to scan; ``base`` None means full history
            qualifying_filter: Predicate a pull request must satisfy
            cache: Previously persisted entry, or None for a cold run

        Returns:
            ResolutionResult with pull requests keyed by number and the new
            per-commit entries to persist

        Raises:
            ResolutionError: If any API call fails terminally
        """
        commits = self.list_commits(commit_range)
        uncached, cached = CommitCache.partition(commits, cache)
        logger.info(f"Resolving {len(commits)} commits: {len(cached)} cached, {len(uncached)} to fetch")
        metrics.incr("resolve.commits_cached", len(cached))
        metrics.incr("resolve.commits_fetched", len(uncached))

        result = ResolutionResult(
            commits_total=len(commits),
            commits_cached=len(cached),
            commits_fetched=len(uncached),
        )
        if not commits:
            return result

        with metrics.Timer("resolve.fetch", commits=len(uncached)):
            fetched = self._fetch_uncached(uncached)

        # Duplicate numbers carry identical content, so last write wins
        for sha in uncached:
            qualifying = [pr for pr in fetched[sha] if qualifying_filter(pr)]
            result.new_entries[sha] = qualifying
            for pr in qualifying:
                result.pull_requests[pr.number] = pr

        for prs in cached.values():
            for pr in prs:
                result.pull_requests[pr.number] = pr

        logger.info(f"✓ Resolved {len(result.pull_requests)} qualifying pull requests")
        return result
