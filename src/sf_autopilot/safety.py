from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta

from .config import DEFAULT_BACKOFF, SafetyConfig
from .models import utc_now


class SafetyManager:
    def __init__(self, cfg: SafetyConfig) -> None:
        self.cfg = cfg
        self._failure_times: deque[datetime] = deque()

    def record_failure(self, at: datetime | None = None) -> None:
        now = at or utc_now()
        self._failure_times.append(now)
        self._trim(now)

    def _trim(self, now: datetime) -> None:
        window = timedelta(minutes=max(1, int(self.cfg.failure_window_minutes)))
        cutoff = now - window
        while self._failure_times and self._failure_times[0] < cutoff:
            self._failure_times.popleft()

    def failure_count(self, now: datetime | None = None) -> int:
        self._trim(now or utc_now())
        return len(self._failure_times)

    def needs_attention(self, now: datetime | None = None) -> bool:
        return self.failure_count(now) >= max(1, int(self.cfg.attention_threshold))

    def backoff_seconds(self, attempt_index: int) -> int:
        schedule = list(self.cfg.relogin_backoff_seconds) or list(DEFAULT_BACKOFF)
        idx = min(max(0, int(attempt_index)), len(schedule) - 1)
        return int(schedule[idx])
