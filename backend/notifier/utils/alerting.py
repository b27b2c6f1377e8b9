import logging
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_THRESHOLDS = {
    "NOTIFICATION_SEND_FAILED": 10,
    "NOTIFICATION_FAILED_FINAL": 5,
    "NOTIFICATION_STATUS_UNMAPPED": 5,
    "NOTIFICATION_STUCK_RECOVERED": 3,
    "EVENT_PROCESSING_ERROR": 5,
}


class PipelineAlertTracker:
    """Counts pipeline incidents per kind over a sliding window.

    An ALERT line is logged when a kind reaches its threshold and again at
    every multiple of it, so a sustained outage keeps surfacing in the logs
    without one line per failure.
    """

    def __init__(
        self,
        window_seconds: int,
        thresholds: dict[str, int],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_seconds = window_seconds
        self._thresholds = dict(thresholds)
        self._clock = clock
        self._seen: dict[str, deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def _expire(self, kind: str, now: float) -> deque[float]:
        seen = self._seen[kind]
        horizon = now - self._window_seconds
        while seen and seen[0] <= horizon:
            seen.popleft()
        return seen

    def record(self, kind: str, metadata: Optional[dict] = None) -> bool:
        """Returns True when this record raised an alert. Unknown kinds are ignored."""
        threshold = self._thresholds.get(kind)
        if not threshold:
            return False
        with self._lock:
            now = self._clock()
            seen = self._expire(kind, now)
            seen.append(now)
            total = len(seen)
        if total % threshold:
            return False
        logger.warning(
            "ALERT notification_incident=%s count=%s window_seconds=%s metadata=%s",
            kind,
            total,
            self._window_seconds,
            metadata or {},
        )
        return True

    def count(self, kind: str) -> int:
        with self._lock:
            if kind not in self._seen:
                return 0
            return len(self._expire(kind, self._clock()))

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()


alert_tracker = PipelineAlertTracker(DEFAULT_WINDOW_SECONDS, DEFAULT_THRESHOLDS)
