"""
Raft Cluster Harness Test Suite

Unit tests for topology, endpoints, polling, the control toggle, the client
session and node lifecycle, plus end-to-end cluster scenarios run against
the simulated runtime.
"""
