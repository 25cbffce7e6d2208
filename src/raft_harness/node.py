"""
Cluster Node Handles

A ``ClusterNode`` is one running cluster member: its transport driver, archive,
consensus module and service container, started in that order from a
``NodeContext`` and closed in reverse. ``ClusterBackupNode`` is the same for
the backup slot, with a cluster backup in place of the consensus module and
service. The handles only start, stop and observe; what the processes do is
up to the runtime that launched them.
"""

import logging
import shutil
from typing import Any, List, Optional

from .config import BackupNodeContext, NodeContext
from .counters import CountersManager
from .messages import BackupState, ElectionState, NodeRole


def _close_all(units: List[Any], logger: logging.Logger) -> None:
    for unit in units:
        if unit is None:
            continue
        try:
            unit.close()
        except Exception as e:
            logger.error(f"Failed to close {unit!r}: {e}")


class ClusterNode:
    """
    Handle on a running cluster member.

    Status accessors delegate to the member's consensus module and service
    container. ``close`` is idempotent; ``clean_up`` removes the member's
    directories and is only meaningful once closed.
    """

    def __init__(self, context: NodeContext, runtime: Any):
        self.context = context
        self.member_id = context.member_id
        self.logger = logging.getLogger(f"raft_harness.node.{self.member_id}")
        self._closed = False

        self.driver = None
        self.archive = None
        self.consensus_module = None
        self.container = None
        try:
            self.driver = runtime.launch_driver(context.driver)
            self.archive = runtime.launch_archive(context.archive)
            self.consensus_module = runtime.launch_consensus_module(context.consensus_module)
            self.container = runtime.launch_service_container(context.service_container)
        except Exception:
            self.logger.error(f"Failed to start node {self.member_id}, closing started processes")
            self.close()
            raise

        self.logger.info(f"Node {self.member_id} started in {context.base_dir}")

    def service(self) -> Any:
        return self.context.service

    def counters(self) -> CountersManager:
        return self.driver.counters

    def role(self) -> NodeRole:
        return self.consensus_module.role

    def is_leader(self) -> bool:
        return self.consensus_module.is_leader()

    def is_follower(self) -> bool:
        return self.consensus_module.role == NodeRole.FOLLOWER

    def election_state(self) -> Optional[ElectionState]:
        """Phase of an in-progress election, None when stable"""
        return self.consensus_module.election_state()

    def commit_position(self) -> int:
        return self.consensus_module.commit_position()

    def snapshot_count(self) -> int:
        return self.consensus_module.snapshot_count()

    def has_member_terminated(self) -> bool:
        return self.consensus_module.has_terminated()

    def has_service_terminated(self) -> bool:
        return self.container.has_terminated()

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        _close_all([self.container, self.consensus_module, self.archive, self.driver], self.logger)
        self.logger.info(f"Node {self.member_id} stopped")

    def clean_up(self) -> None:
        shutil.rmtree(self.context.base_dir, ignore_errors=True)
        shutil.rmtree(self.context.driver_dir, ignore_errors=True)

    def __str__(self) -> str:
        if self._closed:
            return f"ClusterNode({self.member_id}, closed)"
        return f"ClusterNode({self.member_id}, {self.role().name})"


class ClusterBackupNode:
    """Handle on the running cluster backup in the reserved slot"""

    def __init__(self, context: BackupNodeContext, runtime: Any):
        self.context = context
        self.member_id = context.slot_index
        self.logger = logging.getLogger("raft_harness.node.backup")
        self._closed = False

        self.driver = None
        self.archive = None
        self.cluster_backup = None
        try:
            self.driver = runtime.launch_driver(context.driver)
            self.archive = runtime.launch_archive(context.archive)
            self.cluster_backup = runtime.launch_cluster_backup(context.cluster_backup)
        except Exception:
            self.logger.error("Failed to start backup node, closing started processes")
            self.close()
            raise

        self.logger.info(f"Backup node started in slot {self.member_id}")

    def counters(self) -> CountersManager:
        return self.driver.counters

    def state(self) -> BackupState:
        return self.cluster_backup.state()

    def live_log_position(self) -> int:
        return self.cluster_backup.live_log_position()

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        _close_all([self.cluster_backup, self.archive, self.driver], self.logger)
        self.logger.info("Backup node stopped")

    def clean_up(self) -> None:
        shutil.rmtree(self.context.base_dir, ignore_errors=True)
        shutil.rmtree(self.context.driver_dir, ignore_errors=True)
