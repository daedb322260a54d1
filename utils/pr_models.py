#!/usr/bin/env python3
"""Pydantic models for pull request data structures.

This module defines the data models used for representing the pull requests
discovered for a commit range, the range itself, and the outcome of a
resolution run.
"""

from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthorInfo(BaseModel):
    """Basic information about a pull request author."""

    username: str = Field(..., description="GitHub username")
    url: str = Field(..., description="GitHub profile URL")

    model_config = ConfigDict(frozen=True, extra="ignore")


class PullRequestInfo(BaseModel):
    """A pull request associated with a commit. Immutable once constructed."""

    number: int = Field(..., description="Pull request number")
    title: str = Field(..., description="Pull request title")
    url: str = Field(..., description="GitHub URL for the PR")
    merged_at: Optional[datetime] = Field(None, description="Merge timestamp, None when not merged")
    author: Optional[AuthorInfo] = Field(None, description="Pull request author")
    labels: FrozenSet[str] = Field(default_factory=frozenset, description="Attached label names")

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def is_merged(self) -> bool:
        return self.merged_at is not None


class CommitRange(BaseModel):
    """Commits reachable from ``head`` but not from ``base``.

    ``base`` is None when no prior release exists, meaning the entire
    history up to ``head``.
    """

    base: Optional[str] = Field(None, description="Base ref (tag or SHA) or None")
    head: str = Field(..., description="Head commit SHA")

    model_config = ConfigDict(frozen=True)


class QualifyingFilter:
    """Keeps merged pull requests carrying the target label."""

    def __init__(self, target_label: str) -> None:
        if not target_label:
            raise ValueError("target_label must be a non-empty label name")
        self.target_label = target_label

    def __call__(self, pr: PullRequestInfo) -> bool:
        return pr.is_merged and self.target_label in pr.labels

    def __repr__(self) -> str:
        return f"QualifyingFilter(target_label={self.target_label!r})"


class ResolutionResult(BaseModel):
    """Deduplicated qualifying pull requests plus the per-commit entries computed in this run."""

    pull_requests: Dict[int, PullRequestInfo] = Field(default_factory=dict)
    new_entries: Dict[str, List[PullRequestInfo]] = Field(default_factory=dict)
    commits_total: int = 0
    commits_cached: int = 0
    commits_fetched: int = 0

    @property
    def pull_request_list(self) -> List[PullRequestInfo]:
        return list(self.pull_requests.values())


def pull_request_from_raw(pr_data: Dict[str, Any]) -> PullRequestInfo:
    """Map a raw GitHub pull request payload to a PullRequestInfo.

    Args:
        pr_data: Raw pull request dictionary from the REST API

    Returns:
        Normalized PullRequestInfo object
    """
    user_data = pr_data.get("user") or {}
    author = None
    if user_data.get("login"):
        author = AuthorInfo(username=user_data["login"], url=user_data.get("html_url") or "")

    labels_data = pr_data.get("labels") or []
    labels = frozenset(label.get("name") for label in labels_data if label.get("name"))

    return PullRequestInfo(
        number=pr_data.get("number", 0),
        title=pr_data.get("title", ""),
        url=pr_data.get("html_url") or "",
        merged_at=pr_data.get("merged_at"),
        author=author,
        labels=labels,
    )


def safe_extract(data: Dict, *keys, default=None):
    """Safely extract nested dictionary values.

    Args:
        data: Dictionary to extract from
        *keys: Sequence of keys to traverse
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default

    Example:
        safe_extract(commit_data, "commit", "author", "date")
    """
    current = data
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current
