"""Progress notifications posted by long-running library operations.

Batch imports and bulk deletes post one :class:`ProgressNotification` to the
configured sink and keep mutating it as they advance. The consumer may set
``state`` to :attr:`ProgressState.CANCELLED`; the operation checks it between
archives and stops early.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ProgressState(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class ProgressNotification:
    text: str = ""
    progress: float = 0.0
    state: ProgressState = ProgressState.ACTIVE
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.state == ProgressState.CANCELLED

    def cancel(self) -> None:
        with self._lock:
            if self.state == ProgressState.ACTIVE:
                self.state = ProgressState.CANCELLED

    def update(self, text: str, progress: Optional[float] = None) -> None:
        with self._lock:
            self.text = text
            if progress is not None:
                self.progress = min(max(progress, 0.0), 1.0)

    def complete(self) -> None:
        with self._lock:
            if self.state == ProgressState.ACTIVE:
                self.state = ProgressState.COMPLETED
                self.progress = 1.0


NotificationSink = Callable[[ProgressNotification], None]


def log_sink(notification: ProgressNotification) -> None:
    """Sink that only logs the initial post; used when no UI is attached."""
    logger.info("progress-posted text=%r state=%s", notification.text, notification.state.value)
