# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.locks",
#   "purpose": "File locking helpers guarding physical blob writes",
#   "sections": [
#     {"id": "lock-dir-for", "name": "lock_dir_for", "anchor": "function-lock-dir-for", "kind": "function"},
#     {"id": "blob-lock", "name": "blob_lock", "anchor": "function-blob-lock", "kind": "function"},
#     {"id": "lock-metrics-snapshot", "name": "lock_metrics_snapshot", "anchor": "function-lock-metrics-snapshot", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""File-based locking for content-addressed blob writes.

Responsibilities
----------------
- Map a blob hash to a well-known lock file under the storage root so two
  writers of identical content (threads or processes) serialise on the
  physical write while writers of different content proceed independently.
- Capture acquisition/hold timing via :func:`lock_metrics_snapshot` to
  troubleshoot contention during large batch imports.

Design Notes
------------
- Locks are implemented with :mod:`filelock`; set ``BEATMAP_LOCK_USE_SOFT``
  to opt into soft locks on filesystems without ``flock`` support.
- Lock files are sharded by the first two hex digits of the hash.
"""

from __future__ import annotations

import contextlib
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Union

from filelock import FileLock, SoftFileLock, Timeout

__all__ = [
    "Timeout",
    "lock_dir_for",
    "blob_lock",
    "lock_metrics_snapshot",
]

LOGGER = logging.getLogger("BeatmapLibrary.locks")
logging.getLogger("filelock").setLevel(logging.INFO)

_LOCK_DIR_NAME = "locks"
_SOFT_LOCK_ENV = "BEATMAP_LOCK_USE_SOFT"
_DEFAULT_POLL_INTERVAL = 0.05  # seconds


@dataclass
class _LockMetrics:
    acquire_total: int = 0
    timeout_total: int = 0
    wait_ms_sum: float = 0.0
    hold_ms_max: float = 0.0


_metrics_guard = threading.RLock()
_metrics: Dict[str, _LockMetrics] = {}


def lock_dir_for(root_dir: Union[str, Path]) -> Path:
    """Return (and create) the lock directory for a storage root."""

    lock_dir = Path(root_dir).expanduser().resolve(strict=False) / _LOCK_DIR_NAME
    lock_dir.mkdir(parents=True, exist_ok=True)
    return lock_dir


def _select_lock_class():
    return SoftFileLock if os.getenv(_SOFT_LOCK_ENV) else FileLock


def _record(category: str, wait_ms: float, hold_ms: float = -1.0, timed_out: bool = False) -> None:
    with _metrics_guard:
        metrics = _metrics.setdefault(category, _LockMetrics())
        metrics.wait_ms_sum += wait_ms
        if timed_out:
            metrics.timeout_total += 1
            return
        metrics.acquire_total += 1
        if hold_ms >= 0:
            metrics.hold_ms_max = max(metrics.hold_ms_max, hold_ms)


@contextlib.contextmanager
def blob_lock(lock_dir: Path, sha256_hex: str, *, timeout: float = 30.0) -> Iterator[None]:
    """Hold the write lock for one blob hash.

    Raises:
        filelock.Timeout: If the lock could not be acquired within ``timeout``.
    """

    shard = lock_dir / sha256_hex[:2]
    shard.mkdir(parents=True, exist_ok=True)
    lock_file = shard / f"{sha256_hex}.lock"
    lock = _select_lock_class()(str(lock_file), timeout=timeout, thread_local=False)

    start = time.monotonic()
    try:
        lock.acquire(timeout=timeout, poll_interval=_DEFAULT_POLL_INTERVAL)
    except Timeout:
        wait_ms = (time.monotonic() - start) * 1000.0
        LOGGER.info("lock-timeout category=blob wait_ms=%.3f lock_file=%s", wait_ms, lock_file)
        _record("blob", wait_ms, timed_out=True)
        raise

    acquired_at = time.monotonic()
    wait_ms = (acquired_at - start) * 1000.0
    LOGGER.debug("lock-acquired category=blob wait_ms=%.3f hash=%s", wait_ms, sha256_hex)
    try:
        yield None
    finally:
        lock.release()
        _record("blob", wait_ms, (time.monotonic() - acquired_at) * 1000.0)


def lock_metrics_snapshot(*, reset: bool = False) -> Dict[str, Dict[str, Union[int, float]]]:
    """Return a snapshot of collected lock metrics, optionally clearing them."""

    with _metrics_guard:
        snapshot: Dict[str, Dict[str, Union[int, float]]] = {}
        for category, metrics in _metrics.items():
            snapshot[category] = {
                "acquire_total": metrics.acquire_total,
                "timeout_total": metrics.timeout_total,
                "wait_ms_sum": metrics.wait_ms_sum,
                "hold_ms_max": metrics.hold_ms_max,
            }
        if reset:
            _metrics.clear()
        return snapshot
