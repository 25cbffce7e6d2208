"""
Replicated Cluster Test Harness

Stands up, drives and tears down multi-node clusters of a replicated state
machine inside integration tests. The harness owns cluster topology and member
endpoints, the lifecycle of each member's processes, the control toggle used
to request snapshot, shutdown or abort, and the polling primitives that let a
test thread wait on asynchronously changing cluster state.

Member processes are launched through a pluggable runtime; the default,
``raft_harness.sim.LocalRuntime``, runs simulated members inside the test
process.
"""

from .cluster import (
    ClusterBuilder,
    ClusterHarness,
    start_cluster,
    start_single_node_static_cluster,
    start_three_node_static_cluster,
)
from .config import HarnessConfig
from .control import ActionResult, ClusterControl, ControlToggleChannel, ToggleState, find_control_toggle
from .errors import (
    ConfigurationError,
    ControlToggleMissing,
    HarnessError,
    IllegalStateError,
    WaitInterrupted,
)
from .messages import BackupState, ClusterStats, ElectionState, NodeRole, NodeStats
from .node import ClusterBackupNode, ClusterNode
from .polling import ConditionAwaiter, InterruptSignal, KeepAliveDeadline
from .topology import ClusterTopology, NodeSlots, SlotState

__version__ = "1.0.0"
__all__ = [
    "ClusterHarness",
    "ClusterBuilder",
    "HarnessConfig",
    "start_three_node_static_cluster",
    "start_single_node_static_cluster",
    "start_cluster",
    "ClusterTopology",
    "NodeSlots",
    "SlotState",
    "ClusterNode",
    "ClusterBackupNode",
    "ToggleState",
    "ActionResult",
    "ClusterControl",
    "ControlToggleChannel",
    "find_control_toggle",
    "ConditionAwaiter",
    "InterruptSignal",
    "KeepAliveDeadline",
    "NodeRole",
    "ElectionState",
    "BackupState",
    "NodeStats",
    "ClusterStats",
    "HarnessError",
    "ConfigurationError",
    "IllegalStateError",
    "WaitInterrupted",
    "ControlToggleMissing",
]
