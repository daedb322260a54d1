#!/usr/bin/env python3
"""Release notes output model produced by one agent run."""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from utils.pr_models import PullRequestInfo


class ReleaseNotes(BaseModel):
	"""Qualifying pull requests for a commit range and their rendered changelogs."""

	model_config = ConfigDict(extra="forbid")

	repo: str
	base: Optional[str] = None
	head: str
	target_label: str
	pull_requests: List[PullRequestInfo] = Field(default_factory=list)
	markdown: str
	plaintext: str
	commits_total: int = 0
	commits_cached: int = 0
	commits_fetched: int = 0
