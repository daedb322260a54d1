import os
from typing import Dict, Any

class Config:
	"""Configuration for the release notes resolver."""

	# GitHub REST configuration
	GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip('/')
	GITHUB_TOKEN = os.getenv("GITHUB_TOKEN") or os.getenv("GITHUB_PAT")
	HTTP_TIMEOUT_S = int(os.getenv("HTTP_TIMEOUT_S", "30"))
	HEAD_REF = os.getenv("HEAD_REF", "heads/main")
	COMMITS_PAGE_SIZE = int(os.getenv("COMMITS_PAGE_SIZE", "100"))

	# Pull request qualification
	TARGET_LABEL = os.getenv("TARGET_LABEL", "ios")

	# Concurrency
	CONCURRENCY_LIMIT = int(os.getenv("CONCURRENCY_LIMIT", "10"))

	# Backoff for transient failures
	RETRY_MAX = int(os.getenv("RETRY_MAX", "3"))
	RETRY_INITIAL_DELAY_S = float(os.getenv("RETRY_INITIAL_DELAY_S", "1.0"))
	RETRY_MULTIPLIER = float(os.getenv("RETRY_MULTIPLIER", "2.0"))
	RETRY_MAX_DELAY_S = float(os.getenv("RETRY_MAX_DELAY_S", "30.0"))

	# Server-advertised rate limits
	RATE_LIMIT_MAX_RETRIES = int(os.getenv("RATE_LIMIT_MAX_RETRIES", "3"))
	SECONDARY_RATE_LIMIT_MAX_RETRIES = int(os.getenv("SECONDARY_RATE_LIMIT_MAX_RETRIES", "2"))
	RATE_LIMIT_MAX_WAIT_S = int(os.getenv("RATE_LIMIT_MAX_WAIT_S", "900"))

	# Cache config
	CACHE_ROOT = os.getenv("CACHE_ROOT", ".release-notes-cache")
	CACHE_ENABLED = bool(int(os.getenv("CACHE_ENABLED", "1")))
	CACHE_ATOMIC_WRITES = bool(int(os.getenv("CACHE_ATOMIC_WRITES", "1")))
	CACHE_SCHEMA_VERSION = os.getenv("CACHE_SCHEMA_VERSION", "v1")

	# Observability
	METRICS_ROOT = os.getenv("METRICS_ROOT", ".release-notes-cache/metrics")
	METRICS_ENABLED = bool(int(os.getenv("METRICS_ENABLED", "0")))

	@classmethod
	def get_github_config(cls) -> Dict[str, Any]:
		"""Get GitHub configuration for the REST client."""
		return {
			"base_url": cls.GITHUB_API_URL,
			"token": cls.GITHUB_TOKEN,
			"timeout_s": cls.HTTP_TIMEOUT_S,
			"page_size": cls.COMMITS_PAGE_SIZE,
		}

	@classmethod
	def get_retry_config(cls) -> Dict[str, Any]:
		"""Get backoff configuration.

		Returns:
			Mapping with max retries, initial delay, multiplier and delay cap (seconds).
		"""
		return {
			"max_retries": cls.RETRY_MAX,
			"initial_delay_s": cls.RETRY_INITIAL_DELAY_S,
			"multiplier": cls.RETRY_MULTIPLIER,
			"max_delay_s": cls.RETRY_MAX_DELAY_S,
		}

	@classmethod
	def get_rate_limit_config(cls) -> Dict[str, int]:
		return {
			"primary_max_retries": cls.RATE_LIMIT_MAX_RETRIES,
			"secondary_max_retries": cls.SECONDARY_RATE_LIMIT_MAX_RETRIES,
			"max_wait_s": cls.RATE_LIMIT_MAX_WAIT_S,
		}
