#!/usr/bin/env python3
"""Release notes agent for changelog generation from merged pull requests.

This agent resolves the commit range between the latest release and the head
of the main branch, finds the labelled pull requests merged in that range and
renders them as a changelog.
"""

import json
import logging
import os
import sys
import uuid
from typing import Optional

from dotenv import load_dotenv

from cache.cache_backend import MemoryCacheStore
from cache.commit_cache import CommitCache
from clients.github_client import GithubAuthError, GithubClient
from configs.config import Config
from utils.backoff import BackoffPolicy
from utils.changelog_renderer import render_markdown, render_plaintext
from utils.pr_models import CommitRange, QualifyingFilter
from utils.pr_resolver import PRResolver, ResolutionError
from utils.rate_limiter import RateLimiter
from utils.release_notes_models import ReleaseNotes

# Set up logging
logger = logging.getLogger(__name__)


class ReleaseNotesAgent:
	"""Agent wiring boundary lookups, the commit cache and PR resolution together."""

	def __init__(
		self,
		owner: str,
		repo: str,
		client=None,
		commit_cache: Optional[CommitCache] = None,
		rate_limiter: Optional[RateLimiter] = None,
		backoff: Optional[BackoffPolicy] = None,
		use_cache: Optional[bool] = None,
	):
		"""Initialize the release notes agent.

		Args:
			owner: Repository owner (user or organization)
			repo: Repository name
			client: Optional API client. If None, a GithubClient is created.
			commit_cache: Optional commit cache. If None, a file-backed one is used.
			rate_limiter: Optional limiter. If None, one sized by Config.CONCURRENCY_LIMIT is used.
			backoff: Optional retry policy. If None, built from Config.
			use_cache: Whether to read and write the commit cache (defaults to Config.CACHE_ENABLED)
		"""
		self.owner = owner
		self.repo = repo
		self.use_cache = Config.CACHE_ENABLED if use_cache is None else use_cache
		self.rate_limiter = rate_limiter or RateLimiter(Config.CONCURRENCY_LIMIT)
		backoff = backoff or BackoffPolicy.from_config()
		self.client = client or GithubClient(owner, repo, backoff=backoff, pool_size=self.rate_limiter.concurrency_limit)
		if commit_cache is None:
			commit_cache = CommitCache() if self.use_cache else CommitCache(MemoryCacheStore())
		self.commit_cache = commit_cache
		self.resolver = PRResolver(self.client, self.rate_limiter, backoff)
		logger.info("Release notes agent initialized")

	@property
	def full_name(self) -> str:
		return f"{self.owner}/{self.repo}"

	def commit_range(self) -> CommitRange:
		"""Compute the range from the latest release tag (if any) to the head commit."""
		head = self.resolver.call(self.client.get_head_commit, "getCommit")
		tag = self.resolver.call(self.client.get_latest_release_tag, "getLatestRelease")
		if tag:
			logger.info(f"Latest release tag: {tag}")
		return CommitRange(base=tag, head=head)

	def build(self, target_label: Optional[str] = None) -> ReleaseNotes:
		"""Build release notes for the repository.

		Args:
			target_label: Label a pull request must carry (defaults to Config.TARGET_LABEL)

		Returns:
			ReleaseNotes with the qualifying pull requests and both renderings

		Raises:
			ResolutionError: If any API call fails terminally
		"""
		label = target_label or Config.TARGET_LABEL
		logger.info(f"Building release notes for {self.full_name} (label '{label}')")

		commit_range = self.commit_range()
		entry = self.commit_cache.load(self.owner, self.repo) if self.use_cache else None
		result = self.resolver.resolve(commit_range, QualifyingFilter(label), entry)

		if self.use_cache and result.new_entries:
			update = self.commit_cache.empty_entry(self.owner, self.repo).merged_with(result.new_entries)
			self.commit_cache.save(self.owner, self.repo, update)

		pull_requests = result.pull_request_list
		notes = ReleaseNotes(
			repo=self.full_name,
			base=commit_range.base,
			head=commit_range.head,
			target_label=label,
			pull_requests=pull_requests,
			markdown=render_markdown(pull_requests),
			plaintext=render_plaintext(pull_requests),
			commits_total=result.commits_total,
			commits_cached=result.commits_cached,
			commits_fetched=result.commits_fetched,
		)
		logger.info(f"✓ Release notes for {self.full_name}: {len(pull_requests)} pull requests "
				   f"from {result.commits_total} commits ({result.commits_cached} cached)")
		return notes

	def close(self) -> None:
		"""Close the agent and cleanup resources."""
		self.rate_limiter.shutdown(wait=False)
		close = getattr(self.client, "close", None)
		if close:
			close()
		logger.info("Release notes agent closed")


def write_github_output(name: str, value: str, path: Optional[str] = None) -> bool:
	"""Append a multiline output for GitHub Actions; returns False when not running in Actions."""
	path = path or os.getenv("GITHUB_OUTPUT")
	if not path:
		return False
	delimiter = f"ghadelimiter_{uuid.uuid4()}"
	with open(path, "a", encoding="utf-8") as f:
		f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
	return True


def _friendly_message(e: Exception) -> str:
	mapping = {
		"TIMEOUT": "Timeout while fetching data. Please retry or increase HTTP_TIMEOUT_S.",
		"UNAUTHORIZED": "Access denied. Please check your GitHub token and its scopes.",
		"RATE_LIMIT": "Rate limit exceeded. Please wait a few minutes and retry.",
		"NOT_FOUND": "Not found. Please check the repository name and HEAD_REF.",
	}
	return mapping.get(getattr(e, "code", None), str(e))


def _split_repository(value: Optional[str]):
	if not value or "/" not in value:
		return None, None
	owner, _, repo = value.partition("/")
	return owner, repo


def main():
	"""CLI entry point for the release notes agent."""
	import argparse

	load_dotenv()

	parser = argparse.ArgumentParser(
		description="Release Notes Agent - Build a changelog from labelled pull requests merged since the last release",
		formatter_class=argparse.RawDescriptionHelpFormatter,
		epilog="""
Examples:
  python -m agents.release_notes_agent --owner ky1ejs --repo release-notes-action
  python -m agents.release_notes_agent --repository octo/app --label ios --format plaintext
  python -m agents.release_notes_agent --owner o --repo r --json --no-cache
		"""
	)
	parser.add_argument("--owner", help="Repository owner (user or organization)")
	parser.add_argument("--repo", help="Repository name")
	parser.add_argument("--repository", default=os.getenv("GITHUB_REPOSITORY"),
						help="owner/repo shorthand (defaults to GITHUB_REPOSITORY)")
	parser.add_argument("--label", default=None, help="Label a pull request must carry (defaults to TARGET_LABEL)")
	parser.add_argument("--format", choices=["markdown", "plaintext"], default="markdown", help="Changelog format")
	parser.add_argument("--output", help="Also write the changelog to this file")
	parser.add_argument("--concurrency", type=int, default=None, help="Maximum concurrent API calls")
	parser.add_argument("--no-cache", action="store_true", help="Neither read nor write the commit cache")
	parser.add_argument("--refresh-cache", action="store_true", help="Discard the commit cache before resolving")
	parser.add_argument("--json", action="store_true", help="Output full JSON instead of the changelog")
	parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

	args = parser.parse_args()

	# Set up logging
	log_level = logging.DEBUG if args.verbose else logging.INFO
	logging.basicConfig(
		level=log_level,
		format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
	)

	# Suppress verbose logs from libraries unless in debug mode
	if not args.verbose:
		logging.getLogger("urllib3").setLevel(logging.WARNING)
		logging.getLogger("clients.github_client").setLevel(logging.WARNING)

	owner, repo = args.owner, args.repo
	if not (owner and repo):
		owner, repo = _split_repository(args.repository)
	if not (owner and repo):
		parser.error("Provide --owner and --repo, or --repository owner/repo")

	agent = None
	try:
		limiter = RateLimiter(args.concurrency or Config.CONCURRENCY_LIMIT)
		agent = ReleaseNotesAgent(owner, repo, rate_limiter=limiter, use_cache=not args.no_cache)
		if args.refresh_cache:
			agent.commit_cache.invalidate(owner, repo)
		notes = agent.build(args.label)

		changelog = notes.markdown if args.format == "markdown" else notes.plaintext
		if args.output:
			with open(args.output, "w", encoding="utf-8") as f:
				f.write(changelog)
		if write_github_output("release-notes", notes.markdown):
			logger.info("Wrote release-notes output for GitHub Actions")

		if args.json:
			print(json.dumps(notes.model_dump(mode="json"), indent=2))
		else:
			print(changelog)
		sys.exit(0)

	except (ResolutionError, GithubAuthError) as e:
		print(f"Error: {_friendly_message(e)}", file=sys.stderr)
		if args.verbose:
			print("Detailed error information:", file=sys.stderr)
			logger.exception("Detailed error information:")
		sys.exit(1)

	except KeyboardInterrupt:
		print("\nOperation cancelled by user", file=sys.stderr)
		sys.exit(1)

	except Exception as e:
		# Unexpected error
		print(f"Unexpected error: {e}", file=sys.stderr)
		if args.verbose:
			logger.exception("Detailed error information:")
		else:
			print("Use --verbose for more details", file=sys.stderr)
		sys.exit(1)

	finally:
		if agent:
			agent.close()


if __name__ == "__main__":
	main()
