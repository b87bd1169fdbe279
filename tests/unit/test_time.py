"""
Unit tests for time utilities.
"""

import unittest

from core.time import elapsed_ms, now_iso, now_ms, now_utc


class TestNowFunctions(unittest.TestCase):
    """Tests for now_* functions."""

    def test_now_utc(self):
        """now_utc returns aware datetime."""
        dt = now_utc()
        self.assertIsNotNone(dt.tzinfo)

    def test_now_iso(self):
        """now_iso returns ISO string."""
        iso = now_iso()
        self.assertIn("T", iso)
        self.assertIn("+", iso)

    def test_now_ms(self):
        ms = now_ms()
        self.assertIsInstance(ms, int)
        self.assertGreater(ms, 1_600_000_000_000)

    def test_elapsed_ms(self):
        start = now_ms()
        self.assertGreaterEqual(elapsed_ms(start), 0)
        self.assertGreaterEqual(elapsed_ms(start - 1_000), 1_000)


if __name__ == "__main__":
    unittest.main()
