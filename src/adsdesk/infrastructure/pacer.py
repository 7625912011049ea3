from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from ..config import MIN_REQUEST_INTERVAL_SEC

logger = logging.getLogger(__name__)


class RequestPacer:
    """
    Minimum-spacing gate shared by every caller of one Graph client.

    ``acquire`` blocks until at least ``min_interval`` seconds have passed since
    the previous permit, then records the permit instant. The lock is held
    while sleeping so concurrent callers queue behind each other instead of
    all waking at the same moment.
    """

    def __init__(
        self,
        min_interval: float = MIN_REQUEST_INTERVAL_SEC,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = float(min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request_ts: Optional[float] = None

    @property
    def last_request_ts(self) -> Optional[float]:
        return self._last_request_ts

    def acquire(self) -> float:
        """Block until dispatch is allowed. Returns the seconds spent waiting."""
        with self._lock:
            waited = 0.0
            if self._last_request_ts is not None:
                elapsed = self._clock() - self._last_request_ts
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.debug("Pacing: sleeping %.3fs before dispatch", waited)
                    self._sleep(waited)
            self._last_request_ts = self._clock()
            return waited

    def reset(self) -> None:
        with self._lock:
            self._last_request_ts = None
