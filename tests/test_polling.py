"""
Condition Await Tests

Covers the polling primitive, its cooperative cancellation and the keepalive
deadline side effect.
"""

import unittest
import threading
import time
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from raft_harness.errors import WaitInterrupted
from raft_harness.polling import ConditionAwaiter, InterruptSignal, KeepAliveDeadline


class ManualClock:

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestConditionAwaiter(unittest.TestCase):

    def setUp(self):
        self.awaiter = ConditionAwaiter()

    def test_returns_immediately_when_true(self):
        calls = []
        self.awaiter.await_condition(lambda: True, side_effect=lambda: calls.append(1))
        self.assertEqual(calls, [])

    def test_side_effect_runs_per_failed_poll(self):
        remaining = [3]
        calls = []

        def predicate():
            remaining[0] -= 1
            return remaining[0] < 0

        self.awaiter.await_condition(predicate, side_effect=lambda: calls.append(1))
        self.assertEqual(len(calls), 3)

    def test_interrupt_aborts_wait(self):
        signal = InterruptSignal()
        awaiter = ConditionAwaiter(signal)
        timer = threading.Timer(0.05, signal.interrupt)
        timer.start()
        try:
            with self.assertRaises(WaitInterrupted):
                awaiter.await_condition(lambda: False, description="never")
        finally:
            timer.cancel()

    def test_interrupt_checked_after_idle(self):
        """A predicate that is already true wins over a raised signal"""
        signal = InterruptSignal()
        signal.interrupt()
        ConditionAwaiter(signal).await_condition(lambda: True)

    def test_await_with_interval(self):
        start = time.monotonic()
        deadline = start + 0.05
        self.awaiter.await_with_interval(lambda: time.monotonic() > deadline, 0.01)
        self.assertGreaterEqual(time.monotonic() - start, 0.05)

    def test_await_with_interval_interrupted(self):
        self.awaiter.interrupt.interrupt()
        with self.assertRaises(WaitInterrupted):
            self.awaiter.await_with_interval(lambda: False, 0.01)

    def test_await_value(self):
        values = iter([None, None, "leader"])
        self.assertEqual(self.awaiter.await_value(lambda: next(values), 0.001), "leader")

    def test_interrupt_signal_clear(self):
        signal = InterruptSignal()
        signal.interrupt()
        self.assertTrue(signal.is_set())
        with self.assertRaises(WaitInterrupted):
            signal.check()
        signal.clear()
        signal.check()


class TestKeepAliveDeadline(unittest.TestCase):

    def setUp(self):
        self.clock = ManualClock()
        self.fired = []
        self.deadline = KeepAliveDeadline(lambda: self.fired.append(self.clock.now), 1.0, self.clock)

    def test_does_not_fire_before_interval(self):
        self.clock.now = 0.5
        self.deadline()
        self.clock.now = 1.0
        self.deadline()
        self.assertEqual(self.fired, [])

    def test_fires_after_interval_and_rearms(self):
        self.clock.now = 1.5
        self.deadline()
        self.deadline()
        self.assertEqual(self.fired, [1.5])

        self.clock.now = 2.4
        self.deadline()
        self.assertEqual(self.fired, [1.5])

        self.clock.now = 2.6
        self.deadline()
        self.assertEqual(self.fired, [1.5, 2.6])
        self.assertEqual(self.deadline.fired, 2)

    def test_reset_pushes_deadline(self):
        self.clock.now = 0.9
        self.deadline.reset()
        self.clock.now = 1.5
        self.deadline()
        self.assertEqual(self.fired, [])


if __name__ == "__main__":
    unittest.main()
