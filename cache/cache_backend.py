#!/usr/bin/env python3
from __future__ import annotations

import os
import tempfile
from typing import Dict, Optional, Protocol

from configs.config import Config


class CacheStore(Protocol):
	"""Byte store addressed by a string key."""

	def restore(self, key: str) -> Optional[bytes]:
		...

	def persist(self, key: str, data: bytes) -> None:
		...


class FileCacheStore:
	"""Stores each key as one file under ``root_dir``."""

	def __init__(self, root_dir: str = None) -> None:
		self.root_dir = root_dir or Config.CACHE_ROOT
		self.atomic = bool(getattr(Config, "CACHE_ATOMIC_WRITES", True))

	def key_to_path(self, key: str) -> str:
		return os.path.join(self.root_dir, key.replace("/", "_").replace(os.sep, "_") + ".json")

	def restore(self, key: str) -> Optional[bytes]:
		path = self.key_to_path(key)
		if not os.path.exists(path):
			return None
		with open(path, "rb") as f:
			return f.read()

	def persist(self, key: str, data: bytes) -> None:
		path = self.key_to_path(key)
		os.makedirs(self.root_dir, exist_ok=True)
		if not self.atomic:
			with open(path, "wb") as f:
				f.write(data)
			return
		# Atomic via temp file and rename
		tmp_fd, tmp_path = tempfile.mkstemp(dir=self.root_dir, prefix=".tmp_", suffix=".json")
		try:
			with os.fdopen(tmp_fd, "wb") as f:
				f.write(data)
				f.flush()
				os.fsync(f.fileno())
			os.replace(tmp_path, path)
		except BaseException:
			if os.path.exists(tmp_path):
				os.remove(tmp_path)
			raise

	def invalidate(self, key: str) -> None:
		path = self.key_to_path(key)
		if os.path.exists(path):
			os.remove(path)


class MemoryCacheStore:
	"""In-process store, used when persistence is disabled and in tests."""

	def __init__(self) -> None:
		self.data: Dict[str, bytes] = {}

	def restore(self, key: str) -> Optional[bytes]:
		return self.data.get(key)

	def persist(self, key: str, data: bytes) -> None:
		self.data[key] = data
