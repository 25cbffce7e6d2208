"""
Node Lifecycle Tests

Context composition is checked directly; starting and stopping goes through
a recording runtime that hands out inert process stand-ins.
"""

import unittest
import os
import sys

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from raft_harness.addresses import cluster_members_string, member_endpoints
from raft_harness.config import HarnessConfig
from raft_harness.counters import CountersManager
from raft_harness.errors import IllegalStateError
from raft_harness.lifecycle import (
    NodeLifecycleManager,
    backup_node_context,
    dynamic_node_context,
    member_dirs,
    node_from_backup_context,
    static_node_context,
)
from raft_harness.messages import NodeRole
from raft_harness.node import ClusterNode
from raft_harness.topology import ClusterTopology, NodeSlots

BASE_DIR = "/tmp/raft-harness-test"


class Service:
    member_id = None


class Unit:
    """Inert stand-in for any launched process"""

    def __init__(self, kind, context, log):
        self.kind = kind
        self.context = context
        self.log = log
        self.closed = False
        self.counters = CountersManager()
        self.role = NodeRole.FOLLOWER
        log.append(("start", kind))

    def is_leader(self):
        return self.role == NodeRole.LEADER

    def election_state(self):
        return None

    def is_closed(self):
        return self.closed

    def close(self):
        self.closed = True
        self.log.append(("close", self.kind))


class RecordingRuntime:

    default_service_factory = Service

    def __init__(self, fail_on=None):
        self.log = []
        self.fail_on = fail_on

    def _launch(self, kind, context):
        if kind == self.fail_on:
            raise RuntimeError(f"{kind} failed to start")
        return Unit(kind, context, self.log)

    def launch_driver(self, context):
        return self._launch("driver", context)

    def launch_archive(self, context):
        return self._launch("archive", context)

    def launch_consensus_module(self, context):
        return self._launch("consensus", context)

    def launch_service_container(self, context):
        return self._launch("service", context)

    def launch_cluster_backup(self, context):
        return self._launch("backup", context)


class TestNodeContexts(unittest.TestCase):

    def setUp(self):
        self.topology = ClusterTopology(3, 1, appointed_leader_id=0)

    def test_member_dirs(self):
        self.assertEqual(member_dirs(BASE_DIR, 2), (f"{BASE_DIR}-2", f"{BASE_DIR}-2-driver"))

    def test_static_node_context(self):
        service = Service()
        context = static_node_context(self.topology, 1, True, service, BASE_DIR)
        member_dir = f"{BASE_DIR}-1"

        self.assertEqual(context.base_dir, member_dir)
        self.assertEqual(context.driver.directory, f"{member_dir}-driver")
        self.assertTrue(context.driver.dir_delete_on_start)
        self.assertTrue(context.driver.dir_delete_on_shutdown)

        self.assertEqual(context.archive.archive_dir, os.path.join(member_dir, "archive"))
        self.assertTrue(context.archive.delete_archive_on_start)
        self.assertEqual(context.archive.control_channel, "raft:udp?term-length=64k|endpoint=localhost:8011")
        self.assertEqual(context.archive.control_stream_id, 100)

        self.assertEqual(context.archive_client.control_response_stream_id, 111)
        self.assertEqual(
            context.archive_client.control_response_channel,
            "raft:udp?term-length=64k|endpoint=localhost:8021",
        )

        consensus = context.consensus_module
        self.assertEqual(consensus.cluster_member_id, 1)
        self.assertEqual(consensus.cluster_members, cluster_members_string(3))
        self.assertEqual(consensus.appointed_leader_id, 0)
        self.assertEqual(consensus.cluster_dir, os.path.join(member_dir, "consensus-module"))
        self.assertTrue(consensus.delete_dir_on_start)
        self.assertTrue(consensus.log_channel.endswith("localhost:20551"))
        self.assertIsNot(consensus.archive, context.archive_client)

        self.assertEqual(context.service_container.cluster_dir, os.path.join(member_dir, "service"))
        self.assertIs(context.service, service)
        self.assertEqual(service.member_id, 1)

    def test_clean_start_false_keeps_state(self):
        context = static_node_context(self.topology, 0, False, Service(), BASE_DIR)

        self.assertFalse(context.archive.delete_archive_on_start)
        self.assertFalse(context.consensus_module.delete_dir_on_start)
        self.assertTrue(context.driver.dir_delete_on_start)

    def test_consensus_options_pass_through(self):
        context = static_node_context(
            self.topology, 0, True, Service(), BASE_DIR, heartbeat_interval=0.02
        )
        self.assertEqual(context.consensus_module.heartbeat_interval, 0.02)

    def test_dynamic_node_context(self):
        context = dynamic_node_context(self.topology, 3, True, Service(), BASE_DIR)
        consensus = context.consensus_module

        self.assertIsNone(consensus.cluster_member_id)
        self.assertEqual(consensus.cluster_members, "")
        self.assertEqual(consensus.cluster_members_status_endpoints, self.topology.status_endpoints)
        self.assertEqual(consensus.member_endpoints, member_endpoints(3).to_record())
        self.assertIsNone(consensus.appointed_leader_id)

    def test_backup_node_context(self):
        context = backup_node_context(self.topology, True, BASE_DIR)
        backup = context.cluster_backup

        self.assertEqual(context.slot_index, 4)
        self.assertEqual(backup.cluster_dir, os.path.join(f"{BASE_DIR}-4", "cluster-backup"))
        self.assertEqual(backup.cluster_members_status_endpoints, self.topology.status_endpoints)
        self.assertEqual(backup.transfer_endpoint, "localhost:20444")
        self.assertTrue(backup.member_status_channel.endswith("endpoint=localhost:20224"))
        self.assertTrue(backup.delete_dir_on_start)

    def test_node_from_backup_context(self):
        service = Service()
        context = node_from_backup_context(self.topology, service, BASE_DIR)
        consensus = context.consensus_module

        self.assertEqual(context.member_id, 4)
        self.assertEqual(consensus.cluster_member_id, 4)
        self.assertEqual(consensus.appointed_leader_id, 4)
        self.assertEqual(consensus.cluster_members.split(",")[0], "4")
        self.assertNotIn("|", consensus.cluster_members)
        self.assertEqual(consensus.cluster_dir, os.path.join(f"{BASE_DIR}-4", "cluster-backup"))
        self.assertFalse(consensus.delete_dir_on_start)
        self.assertFalse(context.archive.delete_archive_on_start)
        self.assertEqual(service.member_id, 4)


class TestNodeLifecycleManager(unittest.TestCase):

    def setUp(self):
        self.topology = ClusterTopology(3, 1)
        self.slots = NodeSlots(self.topology)
        self.runtime = RecordingRuntime()
        self.config = HarnessConfig(base_dir=BASE_DIR, runtime=self.runtime)
        self.manager = NodeLifecycleManager(self.topology, self.slots, self.config)

    def test_start_static_node(self):
        node = self.manager.start_static_node(0)

        self.assertIs(self.slots[0].node, node)
        self.assertEqual(
            self.runtime.log,
            [("start", "driver"), ("start", "archive"), ("start", "consensus"), ("start", "service")],
        )
        self.assertIsInstance(node.service(), Service)

    def test_close_is_reverse_and_idempotent(self):
        node = self.manager.start_static_node(0)
        self.runtime.log.clear()

        self.manager.stop_node(node)
        self.manager.stop_node(node)

        self.assertEqual(
            self.runtime.log,
            [("close", "service"), ("close", "consensus"), ("close", "archive"), ("close", "driver")],
        )
        self.assertTrue(node.is_closed())

    def test_start_failure_closes_started_units(self):
        runtime = RecordingRuntime(fail_on="consensus")
        config = HarnessConfig(base_dir=BASE_DIR, runtime=runtime)
        manager = NodeLifecycleManager(self.topology, self.slots, config)

        with self.assertRaises(RuntimeError):
            manager.start_static_node(1)

        self.assertEqual(
            runtime.log,
            [("start", "driver"), ("start", "archive"), ("close", "archive"), ("close", "driver")],
        )
        self.assertIsNone(self.slots[1].node)

    def test_open_slot_blocks_restart(self):
        self.manager.start_static_node(0)
        with self.assertRaises(IllegalStateError):
            self.manager.start_static_node(0)

    def test_member_id_out_of_range(self):
        with self.assertRaises(ValueError):
            self.manager.start_static_node(4)

    def test_service_factory_override(self):
        class OtherService(Service):
            pass

        node = self.manager.start_static_node(2, service_factory=OtherService)
        self.assertIsInstance(node.service(), OtherService)

    def test_restart_all_nodes_only_static(self):
        for member_id in range(3):
            self.manager.start_static_node(member_id)
        dynamic = self.manager.start_dynamic_node(3)
        self.manager.stop_all_nodes()

        restarted = self.manager.restart_all_nodes(False)

        self.assertEqual([node.member_id for node in restarted], [0, 1, 2])
        self.assertTrue(all(not node.is_closed() for node in restarted))
        self.assertIs(self.slots[3].node, dynamic)
        self.assertTrue(dynamic.is_closed())
        self.assertFalse(restarted[0].context.consensus_module.delete_dir_on_start)

    def test_start_from_backup_requires_closed_backup(self):
        with self.assertRaises(IllegalStateError):
            self.manager.start_static_node_from_backup()

        backup = self.manager.start_cluster_backup_node()
        self.runtime.log.clear()

        with self.assertRaises(IllegalStateError):
            self.manager.start_static_node_from_backup()

        self.assertEqual(self.runtime.log, [])
        self.assertIs(self.slots.backup_slot.backup, backup)

    def test_start_from_backup(self):
        self.manager.start_cluster_backup_node()
        self.manager.stop_backup_node()

        node = self.manager.start_static_node_from_backup()

        self.assertIsInstance(node, ClusterNode)
        self.assertIs(self.slots.backup_slot.node, node)
        self.assertIsNone(self.slots.backup_slot.backup)
        self.assertEqual(node.member_id, 4)

    def test_stop_all_nodes(self):
        nodes = [self.manager.start_static_node(i) for i in range(3)]
        backup = self.manager.start_cluster_backup_node()

        self.manager.stop_all_nodes()

        self.assertTrue(all(node.is_closed() for node in nodes))
        self.assertTrue(backup.is_closed())


if __name__ == "__main__":
    unittest.main()
