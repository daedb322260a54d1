#!/usr/bin/env python3
"""Counters and timers for a resolution run, written as JSONL.

Recorded metrics:
- ``github.request.latency_s``: one per HTTP request, tagged with the path
  and whether it raised
- ``resolve.commits_cached`` / ``resolve.commits_fetched``: cache hit split
- ``resolve.fetch.latency_s``: wall time of the concurrent per-commit fetch
- ``backoff.retry``: one per retry of a transient failure
- ``throttle.wait``: seconds slept for a GitHub rate limit

Off by default; enable with METRICS_ENABLED=1. Writing a metric never fails
the caller: I/O errors are logged at debug level and dropped.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict

from configs.config import Config

logger = logging.getLogger(__name__)

# Worker threads record metrics concurrently
_write_lock = threading.Lock()


def _path() -> Path:
    root = Path(Config.METRICS_ROOT)
    root.mkdir(parents=True, exist_ok=True)
    return root / "metrics.log"


def incr(name: str, value: Any = 1, **kw) -> None:
    if not Config.METRICS_ENABLED:
        return
    rec: Dict[str, Any] = {"ts": int(time.time()), "metric": name, "value": value}
    for k, v in kw.items():
        if isinstance(v, str) and len(v) > 200:
            rec[k] = v[:200] + "..."
        else:
            rec[k] = v
    line = json.dumps(rec, separators=(",", ":"), default=str) + "\n"
    try:
        with _write_lock:
            with open(_path(), "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
    except OSError as e:
        logger.debug(f"Dropped metric {name}: {e}")


class Timer:
    """Records ``<name>.latency_s`` for the wrapped block, tagged ``ok`` when it did not raise."""

    def __init__(self, name: str, **tags):
        self.metric = f"{name}.latency_s"
        self.tags = tags
        self.started = 0.0

    def __enter__(self) -> "Timer":
        self.started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        incr(self.metric, time.perf_counter() - self.started, ok=exc_type is None, **self.tags)
