from __future__ import annotations

from datetime import timedelta
import unittest

from sf_autopilot.config import SafetyConfig
from sf_autopilot.models import utc_now
from sf_autopilot.safety import SafetyManager


def _cfg(**overrides: object) -> SafetyConfig:
    values = {
        "relogin_backoff_seconds": [1, 2, 4, 8],
        "failure_window_minutes": 30,
        "attention_threshold": 3,
        "relogin_grace_seconds": 10.0,
    }
    values.update(overrides)
    return SafetyConfig(**values)


class SafetyTests(unittest.TestCase):
    def test_attention_after_repeated_failures(self) -> None:
        manager = SafetyManager(_cfg())
        now = utc_now()
        manager.record_failure(now - timedelta(minutes=5))
        manager.record_failure(now - timedelta(minutes=4))
        self.assertFalse(manager.needs_attention(now))
        manager.record_failure(now - timedelta(minutes=3))
        self.assertTrue(manager.needs_attention(now))

    def test_old_failures_leave_the_window(self) -> None:
        manager = SafetyManager(_cfg())
        now = utc_now()
        for minutes in (50, 45, 40):
            manager.record_failure(now - timedelta(minutes=minutes))
        self.assertEqual(manager.failure_count(now), 0)
        self.assertFalse(manager.needs_attention(now))

    def test_backoff_schedule_is_capped(self) -> None:
        manager = SafetyManager(_cfg())
        self.assertEqual([manager.backoff_seconds(i) for i in range(6)], [1, 2, 4, 8, 8, 8])
        self.assertEqual(manager.backoff_seconds(-3), 1)

    def test_empty_schedule_uses_default(self) -> None:
        manager = SafetyManager(_cfg(relogin_backoff_seconds=[]))
        self.assertEqual(manager.backoff_seconds(0), 1)
        self.assertEqual(manager.backoff_seconds(99), 60)


if __name__ == "__main__":
    unittest.main()
