"""
Condition Awaiting

Every ``await_*`` operation of the harness is a busy poll: evaluate a
predicate, and while it is false run an optional side effect, yield the
processor and check for cooperative cancellation. The primitive itself has
no timeout. Callers that want bounded behaviour layer a deadline into the
side effect (see ``KeepAliveDeadline``); test suites cancel a stuck wait by
raising the interrupt signal from another thread.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .errors import WaitInterrupted

Predicate = Callable[[], bool]
SideEffect = Callable[[], None]


def yield_thread() -> None:
    """Give up the rest of this thread's time slice"""
    time.sleep(0)


class InterruptSignal:
    """Cross-thread cancellation flag checked on every poll iteration"""

    def __init__(self):
        self._event = threading.Event()

    def interrupt(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise ``WaitInterrupted`` if the signal has been raised"""
        if self._event.is_set():
            raise WaitInterrupted("await interrupted")


class KeepAliveDeadline:
    """
    Side effect that runs ``action`` each time ``interval`` seconds pass.

    The deadline starts ``interval`` after construction and is pushed out by
    ``interval`` every time it fires. ``reset`` pushes it out without firing,
    which callers use when progress was observed.
    """

    def __init__(self, action: Callable[[], object], interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self.action = action
        self.interval = interval
        self.clock = clock
        self.fired = 0
        self.deadline = clock() + interval

    def reset(self) -> None:
        self.deadline = self.clock() + self.interval

    def __call__(self) -> None:
        now = self.clock()
        if now > self.deadline:
            self.action()
            self.fired += 1
            self.deadline = now + self.interval


class ConditionAwaiter:
    """
    Bounded-by-caller busy poll until a predicate holds.

    Args:
        interrupt: Cancellation signal shared with whoever may abort waits
        idle: Called between polls, defaults to yielding the thread
    """

    def __init__(self, interrupt: Optional[InterruptSignal] = None,
                 idle: Callable[[], None] = yield_thread):
        self.interrupt = interrupt or InterruptSignal()
        self.idle = idle
        self.logger = logging.getLogger("raft_harness.polling")

    def await_condition(self, predicate: Predicate,
                        side_effect: Optional[SideEffect] = None,
                        description: str = "condition") -> None:
        """
        Poll until ``predicate()`` returns True.

        Args:
            predicate: Zero-argument check, evaluated before every idle step
            side_effect: Run once per failed evaluation, before idling
            description: Used in the interrupt message and debug logging

        Raises:
            WaitInterrupted: If the interrupt signal is raised while waiting
        """
        iterations = 0
        while not predicate():
            if side_effect is not None:
                side_effect()
            self.idle()
            iterations += 1
            if self.interrupt.is_set():
                raise WaitInterrupted(f"interrupted while awaiting {description}")

        if iterations:
            self.logger.debug(f"Awaited {description} over {iterations} polls")

    def await_with_interval(self, predicate: Predicate, interval: float,
                            description: str = "condition") -> None:
        """Like ``await_condition`` but sleeps ``interval`` seconds between polls"""
        while not predicate():
            time.sleep(interval)
            if self.interrupt.is_set():
                raise WaitInterrupted(f"interrupted while awaiting {description}")

    def await_value(self, supplier: Callable[[], Optional[object]], interval: float,
                    description: str = "value") -> object:
        """Poll ``supplier`` every ``interval`` seconds until it returns non-None"""
        value = supplier()
        while value is None:
            time.sleep(interval)
            if self.interrupt.is_set():
                raise WaitInterrupted(f"interrupted while awaiting {description}")
            value = supplier()
        return value
