#!/usr/bin/env python3
"""
Basic Cluster Harness Demo

Walks through what an integration test does with the harness:
- Start a three member cluster and wait for a leader
- Connect a client and exchange messages
- Take a snapshot through the control toggle
- Restart every member from its snapshot
- Stand up a cluster backup and promote it to a running member

Everything runs in-process on the simulated runtime.
"""

import sys
import os
import logging
import tempfile
import shutil

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from raft_harness import BackupState, start_three_node_static_cluster


def setup_logging():
    """Configure logging for the demo"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    # Member internals are chatty
    logging.getLogger('raft_harness.sim').setLevel(logging.WARNING)
    logging.getLogger('raft_harness.node').setLevel(logging.WARNING)


def print_section(title):
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_cluster_state(harness):
    stats = harness.cluster_stats()

    print(f"\nCluster State:")
    print(f"  Slots: {stats.total_slots}")
    print(f"  Active nodes: {stats.active_nodes}")
    print(f"  Current leader: {stats.leader_id}")
    print(f"  Backup: {stats.backup_state.name if stats.backup_state else '-'}")
    for member_id, node in stats.nodes.items():
        role = node.role.name if node.role else "CLOSED"
        print(f"  Node {member_id}: {role:9} commit={node.commit_position:<6} "
              f"snapshots={node.snapshot_count} messages={node.message_count}")


def demonstrate_messages(harness, count):
    print_section("Leader Election and Messaging")

    leader = harness.await_leader()
    print(f"✅ Leader elected: node {leader.member_id}")

    harness.connect_client()
    harness.send_messages(count)
    harness.await_responses(count)
    print(f"✅ {count} messages acknowledged by the cluster")

    for follower in harness.followers():
        harness.await_message_count_for_service(follower, count)
    print_cluster_state(harness)
    return leader


def demonstrate_snapshot_restart(harness, leader, count):
    print_section("Snapshot and Restart")

    harness.take_snapshot(leader)
    harness.await_neutral_control_toggle(leader)
    for member_id in range(3):
        harness.await_snapshot_counter(harness.node(member_id), 1)
    print("✅ Snapshot taken on every member")

    harness.stop_all_nodes()
    print("Stopped all members, restarting from disk...")
    harness.restart_all_nodes(False)
    leader = harness.await_leader()
    for member_id in range(3):
        harness.await_snapshot_loaded_for_service(harness.node(member_id))
    print(f"✅ Members recovered from snapshot, node {leader.member_id} leads")

    print_cluster_state(harness)
    return leader


def demonstrate_backup(harness, leader):
    print_section("Cluster Backup")

    harness.start_cluster_backup_node()
    harness.await_backup_state(BackupState.BACKING_UP)
    harness.await_backup_live_log_position(leader.commit_position())
    print(f"✅ Backup caught up to position {leader.commit_position()}")

    harness.stop_all_nodes()
    node = harness.start_static_node_from_backup()
    harness.await_leader()
    harness.await_snapshot_loaded_for_service(node)
    print(f"✅ Node {node.member_id} started from backup with "
          f"{node.service().message_count()} messages")

    print_cluster_state(harness)


def main():
    """Main demo entry point"""
    setup_logging()

    print("🚀 Raft Cluster Harness - Demo")
    print("=" * 60)

    work_dir = tempfile.mkdtemp(prefix="raft-harness-demo-")
    harness = None
    try:
        harness = start_three_node_static_cluster(
            base_dir=os.path.join(work_dir, "cluster"),
            leader_poll_interval=0.1,
        )
        leader = demonstrate_messages(harness, 10)
        leader = demonstrate_snapshot_restart(harness, leader, 10)
        demonstrate_backup(harness, leader)
        print("\n🎉 Demo complete")

    except KeyboardInterrupt:
        print("\nDemo interrupted by user")
    except Exception as e:
        print(f"\nDemo failed with error: {e}")
        import traceback
        traceback.print_exc()
    finally:
        if harness is not None:
            harness.close()
        shutil.rmtree(work_dir, ignore_errors=True)


if __name__ == '__main__':
    main()
