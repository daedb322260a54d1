#!/usr/bin/env python3
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Literal

from utils.pr_models import PullRequestInfo

ChangelogFormat = Literal["markdown", "plaintext"]

MARKDOWN_HEADER = "# Changes\n\nHere are the latest changes in the reverse chronological order:\n\n"
PLAINTEXT_HEADER = "Changes\n=======\nHere are the latest changes in the reverse chronological order:\n\n"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def escape_md(s: str) -> str:
	if not s:
		return s
	for ch in ["*", "_", "`", "|"]:
		s = s.replace(ch, f"\\{ch}")
	return s


def _merged_key(pr: PullRequestInfo):
	merged = pr.merged_at or _EPOCH
	if merged.tzinfo is None:
		merged = merged.replace(tzinfo=timezone.utc)
	return merged, pr.number


def sort_pull_requests(pull_requests: Iterable[PullRequestInfo]) -> List[PullRequestInfo]:
	"""Newest merge first; equal timestamps put the higher PR number first."""
	return sorted(pull_requests, key=_merged_key, reverse=True)


def markdown_item(pr: PullRequestInfo) -> str:
	line = f"* ([#{pr.number}]({pr.url})) {escape_md(pr.title)}"
	if pr.author:
		line += f" by [@{pr.author.username}]({pr.author.url})"
	return line


def plaintext_item(pr: PullRequestInfo) -> str:
	line = f"* (#{pr.number}) {pr.title}"
	if pr.author:
		line += f" by @{pr.author.username}"
	return line


def render(pull_requests: Iterable[PullRequestInfo], fmt: ChangelogFormat = "markdown") -> str:
	if fmt == "markdown":
		header, item = MARKDOWN_HEADER, markdown_item
	elif fmt == "plaintext":
		header, item = PLAINTEXT_HEADER, plaintext_item
	else:
		raise ValueError(f"Unknown changelog format: {fmt}")
	lines = [item(pr) + "\n" for pr in sort_pull_requests(pull_requests)]
	return header + "".join(lines)


def render_markdown(pull_requests: Iterable[PullRequestInfo]) -> str:
	return render(pull_requests, "markdown")


def render_plaintext(pull_requests: Iterable[PullRequestInfo]) -> str:
	return render(pull_requests, "plaintext")
