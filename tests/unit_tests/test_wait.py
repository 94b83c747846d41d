"""
Unit tests for the bounded polling helper.
"""

import threading
import unittest
from unittest.mock import MagicMock
from errors import WaitCancelledError, WaitTimeoutError
from wait import wait_until


class FakeClock:
    """Clock advanced by the fake sleep."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


class TestWaitUntil(unittest.TestCase):
    """Test wait_until outcomes."""

    def setUp(self):
        self.clock = FakeClock()

    def test_returns_when_condition_met(self):
        """Test the wait ends as soon as the condition holds."""
        condition = MagicMock(side_effect=[False, False, True])

        wait_until(condition, timeout=60, interval=5, clock=self.clock, sleep=self.clock.sleep)

        self.assertEqual(condition.call_count, 3)
        self.assertEqual(self.clock.now, 10)

    def test_times_out(self):
        """Test the wait fails once the timeout elapsed."""
        condition = MagicMock(return_value=False)

        with self.assertRaises(WaitTimeoutError):
            wait_until(condition, timeout=12, interval=5, clock=self.clock, sleep=self.clock.sleep)

        # attempts at t=0, 5 and 10; t=15 is past the budget
        self.assertEqual(condition.call_count, 3)

    def test_cancelled_before_first_attempt(self):
        """Test a set cancellation event stops the wait immediately."""
        cancel = threading.Event()
        cancel.set()
        condition = MagicMock(return_value=True)

        with self.assertRaises(WaitCancelledError):
            wait_until(condition, timeout=60, interval=5, cancel=cancel, clock=self.clock)

        condition.assert_not_called()

    def test_cancelled_while_waiting(self):
        """Test cancellation between attempts."""
        cancel = MagicMock()
        cancel.is_set.side_effect = [False, True]
        condition = MagicMock(return_value=False)

        with self.assertRaises(WaitCancelledError):
            wait_until(condition, timeout=60, interval=5, cancel=cancel, clock=self.clock)

        condition.assert_called_once()
        cancel.wait.assert_called_once_with(5)

    def test_condition_errors_propagate(self):
        """Test errors raised by the condition are not swallowed."""
        condition = MagicMock(side_effect=RuntimeError("connection refused"))

        with self.assertRaises(RuntimeError):
            wait_until(condition, timeout=60, interval=5, clock=self.clock, sleep=self.clock.sleep)


if __name__ == "__main__":
    unittest.main()
