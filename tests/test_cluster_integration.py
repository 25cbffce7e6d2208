"""
Cluster Integration Tests

End-to-end scenarios against the in-process runtime: elections, client
traffic, snapshots, shutdown and abort, restart from snapshots, dynamic join,
and recovering a member from a cluster backup.

Each test runs in its own temporary base dir. A watchdog interrupts the
harness if a test runs too long, so a stuck await fails instead of hanging.
"""

import unittest
import threading
import time
import shutil
import sys
import os
import tempfile

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from raft_harness import (
    ClusterHarness,
    ClusterTopology,
    HarnessConfig,
    IllegalStateError,
    start_cluster,
    start_single_node_static_cluster,
    start_three_node_static_cluster,
)
from raft_harness.messages import BackupState, NodeRole

WATCHDOG_TIMEOUT = 30.0
MESSAGE_COUNT = 10


class ClusterTestCase(unittest.TestCase):
    """Starts a watchdog per test and tears the harness down afterwards"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix="raft-harness-it-")
        self.base_dir = os.path.join(self.temp_dir, "cluster")
        self.harness = None
        self.watchdog = threading.Timer(WATCHDOG_TIMEOUT, self._interrupt)
        self.watchdog.daemon = True
        self.watchdog.start()

    def tearDown(self):
        self.watchdog.cancel()
        if self.harness is not None:
            self.harness.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _interrupt(self):
        if self.harness is not None:
            self.harness.interrupt()

    def config_options(self):
        return {
            "base_dir": self.base_dir,
            "leader_poll_interval": 0.05,
            "backup_poll_interval": 0.05,
        }


class TestStaticCluster(ClusterTestCase):

    def test_appointed_leader_is_elected(self):
        self.harness = start_three_node_static_cluster(1, **self.config_options())

        leader = self.harness.await_leader()

        self.assertEqual(leader.member_id, 1)
        self.assertEqual(leader.role(), NodeRole.LEADER)
        followers = self.harness.followers()
        self.assertEqual([node.member_id for node in followers], [0, 2])
        for follower in followers:
            self.harness.await_not_in_election(follower)
            self.assertTrue(follower.is_follower())

    def test_elected_leader_without_appointment(self):
        self.harness = start_three_node_static_cluster(None, **self.config_options())

        leader = self.harness.await_leader()
        followers = self.harness.followers()
        for follower in followers:
            self.harness.await_not_in_election(follower)

        leaders = [i for i in range(3) if self.harness.node(i).is_leader()]
        self.assertEqual(leaders, [leader.member_id])
        self.assertIsNone(leader.election_state())
        self.assertEqual(
            [node.member_id for node in followers],
            [i for i in range(3) if i != leader.member_id],
        )

    def test_messages_reach_every_service(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()

        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)

        for member_id in range(3):
            node = self.harness.node(member_id)
            self.harness.await_message_count_for_service(node, MESSAGE_COUNT)
            self.harness.await_commit_position(node, leader.commit_position())

        stats = self.harness.cluster_stats()
        self.assertEqual(stats.leader_id, leader.member_id)
        self.assertEqual(stats.active_nodes, 3)

    def test_leader_failover(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()
        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)

        self.harness.stop_node(leader)
        new_leader = self.harness.await_leader(leader.member_id)
        self.harness.await_leadership_event(1)

        self.assertNotEqual(new_leader.member_id, leader.member_id)
        self.assertEqual(new_leader.service().message_count(), MESSAGE_COUNT)

        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(2 * MESSAGE_COUNT)

    def test_take_snapshot(self):
        self.harness = start_three_node_static_cluster(0, **self.config_options())
        leader = self.harness.await_leader()
        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)

        self.harness.take_snapshot(leader)
        self.harness.await_neutral_control_toggle(leader)

        for member_id in range(3):
            node = self.harness.node(member_id)
            self.harness.await_snapshot_counter(node, 1)
            self.assertTrue(node.service().was_snapshot_taken())

    def test_second_toggle_while_busy_is_rejected(self):
        self.harness = start_three_node_static_cluster(0, **self.config_options())
        leader = self.harness.await_leader()
        self.harness.stop_node(self.harness.node(1))
        self.harness.stop_node(self.harness.node(2))

        # Without a quorum the snapshot can never commit, so the toggle stays set
        self.harness.take_snapshot(leader)
        with self.assertRaises(AssertionError):
            self.harness.abort_cluster(leader)

    def test_shutdown_cluster(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()
        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)

        self.harness.shutdown_cluster(leader)

        for member_id in range(3):
            node = self.harness.node(member_id)
            self.harness.await_node_termination(node)
            self.assertEqual(node.snapshot_count(), 1)

    def test_abort_cluster(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()

        self.harness.abort_cluster(leader)

        for member_id in range(3):
            node = self.harness.node(member_id)
            self.harness.await_node_termination(node)
            self.assertEqual(node.snapshot_count(), 0)


class TestRestart(ClusterTestCase):

    def prepare_snapshot(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()
        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)

        self.harness.take_snapshot(leader)
        for member_id in range(3):
            self.harness.await_snapshot_counter(self.harness.node(member_id), 1)

        self.harness.stop_all_nodes()

    def test_restart_from_snapshot(self):
        self.prepare_snapshot()

        self.harness.restart_all_nodes(False)
        self.harness.await_leader()

        for member_id in range(3):
            node = self.harness.node(member_id)
            self.harness.await_snapshot_loaded_for_service(node)
            self.assertEqual(node.service().message_count(), MESSAGE_COUNT)

    def test_restart_after_tombstone_replays_log(self):
        self.prepare_snapshot()

        self.harness.tombstone_latest_snapshots()
        self.harness.restart_all_nodes(False)
        self.harness.await_leader()

        for member_id in range(3):
            service = self.harness.node(member_id).service()
            self.assertFalse(service.was_snapshot_loaded())
            self.assertEqual(service.message_count(), MESSAGE_COUNT)

    def test_clean_restart_discards_state(self):
        self.prepare_snapshot()

        self.harness.restart_all_nodes(True)
        self.harness.await_leader()

        for member_id in range(3):
            service = self.harness.node(member_id).service()
            self.assertFalse(service.was_snapshot_loaded())
            self.assertEqual(service.message_count(), 0)

    def test_restart_requires_closed_nodes(self):
        self.harness = start_single_node_static_cluster(**self.config_options())
        self.harness.await_leader()

        with self.assertRaises(IllegalStateError):
            self.harness.restart_all_nodes(False)


class TestDynamicJoin(ClusterTestCase):

    def test_dynamic_member_catches_up(self):
        self.harness = start_cluster(3, 1, **self.config_options())
        self.harness.await_leader()
        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)

        dynamic = self.harness.start_dynamic_node(3)
        self.harness.await_not_in_election(dynamic)
        self.harness.await_message_count_for_service(dynamic, MESSAGE_COUNT)

        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(2 * MESSAGE_COUNT)
        self.harness.await_message_count_for_service(dynamic, 2 * MESSAGE_COUNT)

    def test_dynamic_members_keep_slot_ids_out_of_order(self):
        self.harness = start_cluster(3, 2, **self.config_options())
        self.harness.await_leader()

        later = self.harness.start_dynamic_node(4)
        self.harness.awaiter.await_condition(
            lambda: later.consensus_module.member_id is not None,
            description="member 4 joined",
        )
        earlier = self.harness.start_dynamic_node(3)
        self.harness.awaiter.await_condition(
            lambda: earlier.consensus_module.member_id is not None,
            description="member 3 joined",
        )

        self.assertEqual(later.consensus_module.member_id, 4)
        self.assertEqual(earlier.consensus_module.member_id, 3)


class TestClusterBackup(ClusterTestCase):

    def test_backup_tracks_leader_log(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()
        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)

        self.harness.start_cluster_backup_node()
        self.harness.await_backup_state(BackupState.BACKING_UP)
        self.harness.await_backup_live_log_position(leader.commit_position())

    def test_start_node_from_backup(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()
        self.harness.connect_client()
        self.harness.send_messages(MESSAGE_COUNT)
        self.harness.await_responses(MESSAGE_COUNT)
        self.harness.take_snapshot(leader)
        self.harness.await_snapshot_counter(leader, 1)

        self.harness.start_cluster_backup_node()
        self.harness.await_backup_state(BackupState.BACKING_UP)
        self.harness.await_backup_live_log_position(leader.commit_position())

        with self.assertRaises(IllegalStateError):
            self.harness.start_static_node_from_backup()

        self.harness.stop_all_nodes()
        node = self.harness.start_static_node_from_backup()

        self.assertIs(self.harness.await_leader(), node)
        self.harness.await_snapshot_loaded_for_service(node)
        self.assertEqual(node.service().message_count(), MESSAGE_COUNT)


class TestHarnessLifecycle(ClusterTestCase):

    def test_single_node_cluster(self):
        self.harness = start_single_node_static_cluster(**self.config_options())
        leader = self.harness.await_leader()

        self.assertEqual(leader.member_id, 0)
        self.assertEqual(self.harness.followers(), [])

    def test_interrupt_aborts_await(self):
        config = HarnessConfig(**self.config_options())
        self.harness = ClusterHarness(ClusterTopology(3), config)

        timer = threading.Timer(0.2, self.harness.interrupt)
        timer.start()
        started = time.monotonic()
        try:
            with self.assertRaises(RuntimeError):
                self.harness.await_leader()
        finally:
            timer.cancel()
        self.assertLess(time.monotonic() - started, WATCHDOG_TIMEOUT)

    def test_close_removes_member_directories(self):
        self.harness = start_three_node_static_cluster(**self.config_options())
        self.harness.await_leader()

        self.harness.close()
        self.harness = None

        for member_id in range(3):
            self.assertFalse(os.path.exists(f"{self.base_dir}-{member_id}"))
            self.assertFalse(os.path.exists(f"{self.base_dir}-{member_id}-driver"))


if __name__ == "__main__":
    unittest.main()
