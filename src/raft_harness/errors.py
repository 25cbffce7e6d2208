"""
Harness Error Types

Errors raised by the cluster harness. Every error is also an instance of the
builtin it refines, so callers that only care about the broad category
(``ValueError``, ``RuntimeError``, ``AssertionError``) can keep catching that.
"""


class HarnessError(Exception):
    """Base class for all harness errors"""


class ConfigurationError(HarnessError, ValueError):
    """Topology or context configuration that can never be started"""


class IllegalStateError(HarnessError, RuntimeError):
    """Operation invoked while the harness is in the wrong state for it"""


class WaitInterrupted(HarnessError, RuntimeError):
    """An await was aborted because the interrupt signal was raised"""


class ControlToggleMissing(HarnessError, AssertionError):
    """A node that should publish a control toggle register does not"""
