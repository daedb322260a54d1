#!/usr/bin/env python3
"""GitHub REST API client for commit ranges and commit-to-PR lookups.

Each public method issues its request(s) through a ThrottleGuard so that
GitHub rate limits are waited out at the request boundary. Failures are
raised as typed errors carrying ``code`` and ``status`` so the backoff policy
can tell transient failures from terminal ones. Paginated listings retry
each page request on its own under the client's BackoffPolicy.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from configs.config import Config
from utils import metrics
from utils.backoff import BackoffPolicy
from utils.pr_models import PullRequestInfo, pull_request_from_raw, safe_extract
from utils.rate_limiter import RateLimitedError, ThrottleGuard

# Set up logging
logger = logging.getLogger(__name__)

DEFAULT_SECONDARY_RETRY_AFTER_S = 60
MAX_PAGES = 1000


class GithubApiError(Exception):
    """Raised when GitHub API operations fail."""

    def __init__(self, message: str, code: str = "UNKNOWN", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class GithubAuthError(GithubApiError):
    """Raised when GitHub API authentication fails."""

    def __init__(self, message: str, status: Optional[int] = 401) -> None:
        super().__init__(message, code="UNAUTHORIZED", status=status)


def classify_connection_error(exc: requests.RequestException) -> str:
    """Map a requests network failure to a transient error code."""
    if isinstance(exc, requests.Timeout):
        return "TIMEOUT"
    text = str(exc).lower()
    if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text \
            or "name resolution" in text:
        return "DNS_FAILURE"
    if "connection refused" in text:
        return "CONNECTION_REFUSED"
    if "connection reset" in text or "connection aborted" in text or "remote end closed" in text:
        return "CONNECTION_RESET"
    return "NETWORK"


def _seconds(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def rate_limit_signal(response: requests.Response) -> Optional[RateLimitedError]:
    """Detect a primary or secondary rate limit in a 403/429 response.

    An exhausted quota (``X-RateLimit-Remaining: 0``) is a primary limit and
    waits until ``X-RateLimit-Reset``. Only a body mentioning a secondary rate
    limit is treated as secondary; ``Retry-After`` sets the wait, not the kind.

    Args:
        response: The HTTP response from GitHub API

    Returns:
        RateLimitedError describing the limit, or None if the response is not rate limited
    """
    if response.status_code not in (403, 429):
        return None
    headers = response.headers
    retry_after = _seconds(headers.get("Retry-After"))
    body = (response.text or "").lower()

    if headers.get("X-RateLimit-Remaining") == "0":
        reset_at = _seconds(headers.get("X-RateLimit-Reset")) or 0
        wait_s = max(0, int(reset_at) - int(time.time()))
        return RateLimitedError(f"Rate limit exceeded: HTTP {response.status_code}", wait_s, secondary=False)

    if "secondary rate limit" in body:
        wait_s = retry_after if retry_after is not None else DEFAULT_SECONDARY_RETRY_AFTER_S
        return RateLimitedError(f"Secondary rate limit: HTTP {response.status_code}", wait_s, secondary=True)

    if retry_after is not None or "rate limit" in body:
        wait_s = retry_after if retry_after is not None else DEFAULT_SECONDARY_RETRY_AFTER_S
        return RateLimitedError(f"Rate limit exceeded: HTTP {response.status_code}", wait_s, secondary=False)
    return None


class GithubClient:
    """REST client scoped to a single repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        timeout_s: Optional[int] = None,
        *,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        throttle: Optional[ThrottleGuard] = None,
        backoff: Optional[BackoffPolicy] = None,
        pool_size: int = 10,
        session: Optional[requests.Session] = None,
    ):
        """Initialize GitHub client.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name
            token: GitHub Personal Access Token (defaults to Config.GITHUB_TOKEN)
            timeout_s: Request timeout in seconds (defaults to Config.HTTP_TIMEOUT_S)
            base_url: API root (defaults to Config.GITHUB_API_URL)
            page_size: Commits per page when listing history
            throttle: Rate-limit guard wrapping every request
            backoff: Retry policy applied to each page of a paginated listing
            pool_size: HTTP connection pool size, match the concurrency limit
            session: Pre-built session, mainly for tests

        Raises:
            GithubAuthError: If no token is provided
        """
        github_config = Config.get_github_config()
        self.owner = owner
        self.repo = repo
        self.token = token or github_config["token"]
        self.timeout_s = timeout_s or github_config["timeout_s"]
        self.base_url = (base_url or github_config["base_url"]).rstrip("/")
        self.page_size = page_size or github_config["page_size"]
        self.throttle = throttle or ThrottleGuard.from_config()
        self.backoff = backoff or BackoffPolicy.from_config()

        if not self.token:
            raise GithubAuthError("GitHub token is required (GITHUB_TOKEN or GITHUB_PAT env var)", status=None)

        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'token {self.token}',
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': 'release-notes-resolver/1.0'
        })
        # Retries are owned by BackoffPolicy and ThrottleGuard, not urllib3
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
        self.session.mount("https://", adapter)

        logger.info(f"GitHub client initialized for {owner}/{repo}")

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            with metrics.Timer("github.request", path=path):
                response = self.session.get(url, params=params, timeout=self.timeout_s)
        except requests.RequestException as e:
            code = classify_connection_error(e)
            raise GithubApiError(f"Request to {path} failed: {e}", code=code) from e

        limited = rate_limit_signal(response)
        if limited is not None:
            raise limited
        if response.status_code == 401:
            raise GithubAuthError("Invalid GitHub token or insufficient permissions")
        if response.status_code == 404:
            raise GithubApiError(f"Not found: {path}", code="NOT_FOUND", status=404)
        if response.status_code != 200:
            raise GithubApiError(f"GitHub API error: HTTP {response.status_code} for {path}",
                                 code="HTTP_ERROR", status=response.status_code)
        return response

    def _get_json(self, path: str, context: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.throttle.call(lambda: self._request(path, params), context)
        try:
            return response.json()
        except ValueError as e:
            raise GithubApiError(f"Invalid JSON from {path}: {e}", code="INVALID_RESPONSE",
                                 status=response.status_code) from e

    def _get_page(self, path: str, context: str, params: Dict[str, Any]) -> Any:
        # Each page has its own retry budget; earlier pages are never refetched
        return self.backoff.execute(lambda: self._get_json(path, context, params), context)

    def get_head_commit(self, ref: Optional[str] = None) -> str:
        """Resolve ``ref`` (default Config.HEAD_REF) to a commit SHA.

        Raises:
            GithubApiError: If API request fails
        """
        ref = ref or Config.HEAD_REF
        logger.info(f"Fetching head commit: {self.owner}/{self.repo}@{ref}")
        data = self._get_json(f"{self.repo_path}/commits/{ref}", context=f"getCommit {ref}")
        sha = safe_extract(data, "sha")
        if not sha:
            raise GithubApiError(f"No SHA in commit response for {ref}", code="INVALID_RESPONSE")
        logger.debug(f"✓ Head commit: {sha}")
        return sha

    def get_latest_release_tag(self) -> Optional[str]:
        """Return the tag of the latest published release, or None if the repo has no release.

        Raises:
            GithubApiError: If API request fails for a reason other than a missing release
        """
        logger.info(f"Fetching latest release: {self.owner}/{self.repo}")
        try:
            data = self._get_json(f"{self.repo_path}/releases/latest", context="getLatestRelease")
        except GithubApiError as e:
            if e.code == "NOT_FOUND":
                logger.info(f"No release found for {self.owner}/{self.repo}")
                return None
            raise
        tag = safe_extract(data, "tag_name")
        logger.debug(f"✓ Latest release tag: {tag}")
        return tag or None

    def compare_commits(self, base: str, head: str) -> List[str]:
        """List commit SHAs reachable from ``head`` but not from ``base``.

        Raises:
            GithubApiError: If API request fails
        """
        path = f"{self.repo_path}/compare/{base}...{head}"
        logger.info(f"Comparing commits: {base}...{head}")

        shas: List[str] = []
        page = 1
        while page <= MAX_PAGES:
            params = {'page': page, 'per_page': self.page_size}
            data = self._get_page(path, f"compareCommits {base}...{head} page {page}", params)
            page_commits = data.get("commits") or []
            shas.extend(c["sha"] for c in page_commits if c.get("sha"))
            total = data.get("total_commits", len(shas))
            if not page_commits or len(shas) >= total:
                break
            page += 1

        logger.info(f"Found {len(shas)} commits since {base}")
        return shas

    def list_commits_since(self, head: str) -> List[str]:
        """List every commit SHA in the history ending at ``head``, paginated.

        Raises:
            GithubApiError: If API request fails
        """
        path = f"{self.repo_path}/commits"
        logger.info(f"Listing full history up to {head}")

        shas: List[str] = []
        page = 1
        while page <= MAX_PAGES:
            params = {'sha': head, 'page': page, 'per_page': self.page_size}
            page_commits = self._get_page(path, f"listCommits page {page}", params)
            if not page_commits:
                break
            shas.extend(c["sha"] for c in page_commits if c.get("sha"))
            if len(page_commits) < self.page_size:
                break
            page += 1
        else:
            logger.warning(f"History of {self.owner}/{self.repo} exceeds {MAX_PAGES} pages, truncating")

        logger.info(f"Found {len(shas)} commits in history")
        return shas

    def list_pull_requests_for_commit(self, sha: str) -> List[PullRequestInfo]:
        """Fetch the pull requests associated with a commit.

        Raises:
            GithubApiError: If API request fails
        """
        logger.debug(f"Fetching pull requests for commit {sha}")
        data = self._get_json(f"{self.repo_path}/commits/{sha}/pulls", context=f"listPullRequests {sha}")
        return [pull_request_from_raw(pr) for pr in data or [] if pr]

    def close(self) -> None:
        """Close the GitHub client session."""
        if self.session:
            self.session.close()
            logger.debug("GitHub client session closed")
