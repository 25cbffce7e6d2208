"""
Cluster Harness

Top-level orchestrator for integration tests: owns the topology, the member
slots (including the reserved backup slot) and the client session, and exposes
cluster-level operations on top of them: start and stop nodes, find the
leader, trigger snapshot, shutdown or abort, and await cluster state.

All waiting is polling on the calling thread through one ``ConditionAwaiter``;
``interrupt`` may be called from any other thread (typically a test watchdog)
to abort whatever wait is in progress.
"""

import logging
from typing import Any, Callable, List, Optional

from .client import ClientSession
from .config import HarnessConfig
from .control import ControlToggleChannel, ToggleState
from .errors import IllegalStateError
from .lifecycle import NodeLifecycleManager
from .messages import BackupState, ClusterStats, NodeStats
from .node import ClusterBackupNode, ClusterNode
from .polling import ConditionAwaiter, InterruptSignal
from .topology import ClusterTopology, NodeSlots


class ClusterHarness:
    """
    Test cluster of simulated or real members.

    Args:
        topology: Static and dynamic member counts and the appointed leader
        config: Base dir, runtime, service factory and timings; defaults
            to ``HarnessConfig()``
    """

    def __init__(self, topology: ClusterTopology, config: Optional[HarnessConfig] = None):
        self.topology = topology
        self.config = config or HarnessConfig()
        self.slots = NodeSlots(topology)
        self.interrupt_signal = InterruptSignal()
        self.awaiter = ConditionAwaiter(self.interrupt_signal)
        self.control = ControlToggleChannel(self.awaiter)
        self.lifecycle = NodeLifecycleManager(topology, self.slots, self.config)
        self.client_session = ClientSession(
            self.config.runtime,
            topology,
            self.config.base_dir,
            self.awaiter,
            keep_alive_interval=self.config.keep_alive_interval,
        )
        self.logger = logging.getLogger("raft_harness.cluster")
        self.logger.info(
            f"Cluster harness for {topology.static_member_count} static and "
            f"{topology.dynamic_member_count} dynamic members in {self.config.base_dir}"
        )

    # Node lifecycle

    def start_static_node(self, member_id: int, clean_start: bool = True,
                          service_factory: Optional[Callable[[], Any]] = None) -> ClusterNode:
        return self.lifecycle.start_static_node(member_id, clean_start, service_factory)

    def start_dynamic_node(self, member_id: int, clean_start: bool = True,
                           service_factory: Optional[Callable[[], Any]] = None) -> ClusterNode:
        return self.lifecycle.start_dynamic_node(member_id, clean_start, service_factory)

    def start_cluster_backup_node(self, clean_start: bool = True) -> ClusterBackupNode:
        return self.lifecycle.start_cluster_backup_node(clean_start)

    def start_static_node_from_backup(
            self, service_factory: Optional[Callable[[], Any]] = None) -> ClusterNode:
        return self.lifecycle.start_static_node_from_backup(service_factory)

    def stop_node(self, node: ClusterNode) -> None:
        self.lifecycle.stop_node(node)

    def stop_backup_node(self) -> None:
        self.lifecycle.stop_backup_node()

    def stop_all_nodes(self) -> None:
        self.lifecycle.stop_all_nodes()

    def restart_all_nodes(self, clean_start: bool) -> List[ClusterNode]:
        return self.lifecycle.restart_all_nodes(clean_start)

    def node(self, index: int) -> Optional[ClusterNode]:
        return self.slots[index].node

    def backup_node(self) -> Optional[ClusterBackupNode]:
        return self.slots.backup_slot.backup

    def static_cluster_members(self) -> str:
        return self.topology.static_cluster_members

    # Leader discovery

    def find_leader(self, skip_id: Optional[int] = None) -> Optional[ClusterNode]:
        """
        First open node, in slot order, that leads and is not in an election.

        Returns None when there is none; that is not an error.
        """
        for slot in self.slots:
            node = slot.node
            if slot.index == skip_id or node is None or node.is_closed():
                continue
            if node.is_leader() and node.election_state() is None:
                return node
        return None

    def await_leader(self, skip_id: Optional[int] = None) -> ClusterNode:
        return self.awaiter.await_value(
            lambda: self.find_leader(skip_id),
            self.config.leader_poll_interval,
            description="leader",
        )

    def followers(self) -> List[ClusterNode]:
        """Open member nodes that are not leading, in slot order"""
        return [
            node for node in self.slots.nodes()
            if not node.is_closed() and not node.is_leader()
        ]

    # Node state awaits

    def await_not_in_election(self, node: ClusterNode) -> None:
        self.awaiter.await_condition(
            lambda: node.election_state() is None,
            description=f"node {node.member_id} out of election",
        )

    def await_commit_position(self, node: ClusterNode, position: int) -> None:
        self.awaiter.await_condition(
            lambda: node.commit_position() == position,
            description=f"commit position {position} on node {node.member_id}",
        )

    def await_snapshot_counter(self, node: ClusterNode, value: int) -> None:
        self.awaiter.await_condition(
            lambda: node.snapshot_count() == value,
            description=f"snapshot count {value} on node {node.member_id}",
        )

    def await_node_termination(self, node: ClusterNode) -> None:
        self.awaiter.await_condition(
            lambda: node.has_member_terminated() and node.has_service_terminated(),
            description=f"termination of node {node.member_id}",
        )

    def await_message_count_for_service(self, node: ClusterNode, count: int) -> None:
        """
        Wait until ``node``'s service has seen ``count`` messages.

        Sends a keepalive each idle interval to keep the client session open,
        so the client must be connected.
        """
        if not self.client_session.is_connected():
            raise IllegalStateError("client not connected")
        self.awaiter.await_condition(
            lambda: node.service().message_count() >= count,
            side_effect=self.client_session.keep_alive_deadline(),
            description=f"{count} messages in service of node {node.member_id}",
        )

    def await_snapshot_loaded_for_service(self, node: ClusterNode) -> None:
        self.awaiter.await_condition(
            lambda: node.service().was_snapshot_loaded(),
            description=f"snapshot loaded by service of node {node.member_id}",
        )

    def await_neutral_control_toggle(self, leader: ClusterNode) -> None:
        self.control.await_neutral(leader)

    # Backup awaits

    def _require_backup(self) -> ClusterBackupNode:
        backup = self.backup_node()
        if backup is None:
            raise IllegalStateError("no backup node present")
        return backup

    def await_backup_state(self, state: BackupState) -> None:
        backup = self._require_backup()
        self.awaiter.await_with_interval(
            lambda: backup.state() == state,
            self.config.backup_poll_interval,
            description=f"backup state {state.name}",
        )

    def await_backup_live_log_position(self, position: int) -> None:
        backup = self._require_backup()
        self.awaiter.await_with_interval(
            lambda: backup.live_log_position() == position,
            self.config.backup_poll_interval,
            description=f"backup live log position {position}",
        )

    # Control toggle

    def _request(self, leader: ClusterNode, state: ToggleState) -> None:
        if not self.control.request_toggle(leader, state):
            raise AssertionError(
                f"{state.name} toggle rejected by node {leader.member_id}"
            )
        self.logger.info(f"Requested {state.name} through node {leader.member_id}")

    def take_snapshot(self, leader: ClusterNode) -> None:
        self._request(leader, ToggleState.SNAPSHOT)

    def shutdown_cluster(self, leader: ClusterNode) -> None:
        self._request(leader, ToggleState.SHUTDOWN)

    def abort_cluster(self, leader: ClusterNode) -> None:
        self._request(leader, ToggleState.ABORT)

    def tombstone_latest_snapshots(self) -> None:
        """Invalidate the latest snapshot of every member that has been started"""
        for node in self.slots.nodes():
            recording_log = self.config.runtime.recording_log(node.context.consensus_module.cluster_dir)
            if not recording_log.tombstone_latest_snapshot():
                raise AssertionError(f"node {node.member_id} has no snapshot to tombstone")

    # Client

    def client(self) -> Any:
        return self.client_session.client

    def connect_client(self) -> Any:
        return self.client_session.connect()

    def reconnect_client(self) -> Any:
        return self.client_session.reconnect()

    def send_messages(self, count: int) -> None:
        self.client_session.send_messages(count)

    def send_message(self, payload: bytes) -> None:
        self.client_session.send_message(payload)

    def await_responses(self, count: int) -> None:
        self.client_session.await_responses(count)

    def await_leadership_event(self, count: int) -> None:
        self.client_session.await_leadership_event(count)

    # Monitoring

    def cluster_stats(self) -> ClusterStats:
        nodes = {}
        for node in self.slots.nodes():
            closed = node.is_closed()
            nodes[node.member_id] = NodeStats(
                member_id=node.member_id,
                role=None if closed else node.role(),
                election_state=None if closed else node.election_state(),
                commit_position=node.commit_position(),
                snapshot_count=node.snapshot_count(),
                message_count=node.service().message_count(),
                closed=closed,
            )

        leader = self.find_leader()
        backup = self.backup_node()
        return ClusterStats(
            total_slots=len(self.slots),
            active_nodes=sum(1 for stats in nodes.values() if not stats.closed),
            leader_id=leader.member_id if leader else None,
            backup_state=backup.state() if backup else None,
            nodes=nodes,
        )

    def interrupt(self) -> None:
        """Abort the wait in progress; safe to call from any thread"""
        self.interrupt_signal.interrupt()

    def close(self) -> None:
        self.client_session.close()

        backup = self.backup_node()
        if backup is not None:
            backup.close()
            backup.clean_up()

        for node in self.slots.nodes():
            node.close()
            node.clean_up()

        self.logger.info("Cluster harness closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __str__(self) -> str:
        leader = self.find_leader()
        open_nodes = [node for node in self.slots.nodes() if not node.is_closed()]
        return (
            f"ClusterHarness(nodes={len(open_nodes)}/{self.topology.member_count}, "
            f"leader={leader.member_id if leader else None})"
        )


class ClusterBuilder:
    """
    Fluent construction of a started ``ClusterHarness``.

    Example:
        harness = (ClusterBuilder()
                   .static_members(3)
                   .appointed_leader(0)
                   .base_dir("/tmp/cluster")
                   .start())
    """

    def __init__(self):
        self._static_member_count = 3
        self._dynamic_member_count = 0
        self._appointed_leader_id: Optional[int] = None
        self._config_options = {}

    def static_members(self, count: int) -> "ClusterBuilder":
        self._static_member_count = count
        return self

    def dynamic_members(self, count: int) -> "ClusterBuilder":
        self._dynamic_member_count = count
        return self

    def appointed_leader(self, member_id: Optional[int]) -> "ClusterBuilder":
        self._appointed_leader_id = member_id
        return self

    def base_dir(self, base_dir: str) -> "ClusterBuilder":
        self._config_options["base_dir"] = base_dir
        return self

    def runtime(self, runtime: Any) -> "ClusterBuilder":
        self._config_options["runtime"] = runtime
        return self

    def service_factory(self, factory: Callable[[], Any]) -> "ClusterBuilder":
        self._config_options["service_factory"] = factory
        return self

    def option(self, name: str, value: Any) -> "ClusterBuilder":
        """Set any other ``HarnessConfig`` field"""
        self._config_options[name] = value
        return self

    def topology(self) -> ClusterTopology:
        return ClusterTopology(
            self._static_member_count,
            self._dynamic_member_count,
            self._appointed_leader_id,
        )

    def build(self) -> ClusterHarness:
        """Harness with no nodes started"""
        topology = self.topology()
        return ClusterHarness(topology, HarnessConfig(**self._config_options))

    def start(self) -> ClusterHarness:
        """Harness with every static member started clean"""
        harness = self.build()
        try:
            for member_id in range(harness.topology.static_member_count):
                harness.start_static_node(member_id, True)
        except Exception:
            harness.close()
            raise
        return harness


def start_three_node_static_cluster(appointed_leader_id: Optional[int] = None,
                                    service_factory: Optional[Callable[[], Any]] = None,
                                    **config_options) -> ClusterHarness:
    builder = ClusterBuilder().static_members(3).appointed_leader(appointed_leader_id)
    if service_factory is not None:
        builder.service_factory(service_factory)
    for name, value in config_options.items():
        builder.option(name, value)
    return builder.start()


def start_single_node_static_cluster(**config_options) -> ClusterHarness:
    builder = ClusterBuilder().static_members(1).appointed_leader(0)
    for name, value in config_options.items():
        builder.option(name, value)
    return builder.start()


def start_cluster(static_member_count: int, dynamic_member_count: int,
                  **config_options) -> ClusterHarness:
    """Start the static members only; dynamic members are started by the caller"""
    builder = (ClusterBuilder()
               .static_members(static_member_count)
               .dynamic_members(dynamic_member_count))
    for name, value in config_options.items():
        builder.option(name, value)
    return builder.start()
