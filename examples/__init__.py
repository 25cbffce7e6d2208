"""
Raft Cluster Harness Examples

Runnable walkthroughs of the harness on the simulated runtime:
- Leader election and client messaging
- Snapshot, restart and cluster backup

Run these examples to see what an integration test drives.
"""
