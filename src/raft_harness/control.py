"""
Cluster Control Toggle

The control toggle is a register published by the consensus module through
its counters. An operator requests a cluster wide action by moving the
register from NEUTRAL to the action's code; the consensus module performs the
action and moves the register back to NEUTRAL itself. Only that one transition
is ever made from outside, so a request made while another action is still in
flight is simply rejected.
"""

from enum import Enum
from typing import Optional

from .counters import CONTROL_TOGGLE_TYPE_ID, AtomicCounter, CountersManager
from .errors import ControlToggleMissing
from .polling import ConditionAwaiter


class ToggleState(Enum):
    """Integer codes held by the control toggle register"""
    INACTIVE = 0
    NEUTRAL = 1
    SNAPSHOT = 4
    SHUTDOWN = 5
    ABORT = 6

    @property
    def code(self) -> int:
        return self.value

    @classmethod
    def get(cls, counter: AtomicCounter) -> "ToggleState":
        return cls(counter.get())

    def toggle(self, counter: AtomicCounter) -> bool:
        """Request this state, succeeding only from NEUTRAL"""
        return counter.compare_and_set(ToggleState.NEUTRAL.code, self.code)

    def reset(self, counter: AtomicCounter) -> bool:
        """Return a register in this state to NEUTRAL; engine side only"""
        return counter.compare_and_set(self.code, ToggleState.NEUTRAL.code)


class ActionResult(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


def find_control_toggle(counters: CountersManager) -> Optional[AtomicCounter]:
    return counters.find_by_type_id(CONTROL_TOGGLE_TYPE_ID)


class ClusterControl:
    """Command-style view of the toggle register"""

    ACTIONS = (ToggleState.SNAPSHOT, ToggleState.SHUTDOWN, ToggleState.ABORT)

    @staticmethod
    def request_action(counters: CountersManager, kind: ToggleState) -> ActionResult:
        """
        Ask the consensus module owning ``counters`` to perform ``kind``.

        Raises:
            ValueError: If ``kind`` is not an action
            ControlToggleMissing: If no toggle register is published
        """
        toggle = find_control_toggle(counters)
        if toggle is None:
            raise ControlToggleMissing("control toggle register not found")
        return ClusterControl.request_on(toggle, kind)

    @staticmethod
    def request_on(toggle: AtomicCounter, kind: ToggleState) -> ActionResult:
        """Same as ``request_action`` for an already located register"""
        if kind not in ClusterControl.ACTIONS:
            raise ValueError(f"{kind.name} is not a cluster action")
        return ActionResult.ACCEPTED if kind.toggle(toggle) else ActionResult.REJECTED


class ControlToggleChannel:
    """Issues toggle requests to a node and waits for them to complete"""

    def __init__(self, awaiter: ConditionAwaiter):
        self.awaiter = awaiter

    @staticmethod
    def _toggle_of(node) -> AtomicCounter:
        toggle = find_control_toggle(node.counters())
        if toggle is None:
            raise ControlToggleMissing(f"node {node.member_id} publishes no control toggle")
        return toggle

    def request_toggle(self, node, target: ToggleState) -> bool:
        toggle = self._toggle_of(node)
        return ClusterControl.request_on(toggle, target) == ActionResult.ACCEPTED

    def await_neutral(self, node) -> None:
        toggle = self._toggle_of(node)
        self.awaiter.await_condition(
            lambda: toggle.get() == ToggleState.NEUTRAL.code,
            description=f"neutral control toggle on node {node.member_id}",
        )
