"""
Snapshots and the Recording Log

A member snapshots its service state when the cluster is asked to. Each
snapshot is written as JSON into the member's cluster directory and indexed in
a recording log, so that a restart (or a node promoted from a backup) can load
the latest valid snapshot and replay only the log that follows it.
Tombstoning marks the latest snapshot invalid, forcing a full replay.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Snapshot:
    """
    A service snapshot taken after the log entry at ``index`` was applied.
    """
    index: int                    # Log index of the snapshot entry
    term: int                     # Term of that entry
    position: int                 # Log position just after that entry
    timestamp: float
    state: Dict[str, Any]         # Service state
    file_name: str = ""
    valid: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Index record, without the service state"""
        return {
            "index": self.index,
            "term": self.term,
            "position": self.position,
            "timestamp": self.timestamp,
            "file_name": self.file_name,
            "valid": self.valid,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], state: Optional[Dict[str, Any]] = None) -> "Snapshot":
        return cls(
            index=data["index"],
            term=data["term"],
            position=data["position"],
            timestamp=data["timestamp"],
            state=state or {},
            file_name=data.get("file_name", ""),
            valid=data.get("valid", True),
            metadata=data.get("metadata", {}),
        )


class RecordingLog:
    """Persistent index of the snapshots in one cluster directory"""

    INDEX_FILE = "recording-log.json"

    def __init__(self, cluster_dir: str):
        self.cluster_dir = cluster_dir
        self.index_path = os.path.join(cluster_dir, self.INDEX_FILE)
        self.snapshots: List[Snapshot] = []
        self.lock = threading.Lock()
        self.logger = logging.getLogger("raft_harness.sim.snapshots")
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.index_path):
            return
        with open(self.index_path, "r", encoding="utf-8") as stream:
            records = json.load(stream)
        for record in records:
            self.snapshots.append(Snapshot.from_dict(record))

    def _persist_index(self) -> None:
        os.makedirs(self.cluster_dir, exist_ok=True)
        with open(self.index_path, "w", encoding="utf-8") as stream:
            json.dump([s.to_dict() for s in self.snapshots], stream, indent=2)

    def append_snapshot(self, index: int, term: int, position: int,
                        state: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> Snapshot:
        """Write a snapshot file and add it to the index"""
        snapshot = Snapshot(
            index=index,
            term=term,
            position=position,
            timestamp=time.time(),
            state=dict(state),
            file_name=f"snapshot-{term}-{index}.json",
            metadata=metadata or {},
        )

        with self.lock:
            os.makedirs(self.cluster_dir, exist_ok=True)
            with open(os.path.join(self.cluster_dir, snapshot.file_name), "w", encoding="utf-8") as stream:
                json.dump(snapshot.state, stream)
            self.snapshots.append(snapshot)
            self._persist_index()

        self.logger.info(f"Recorded snapshot at index {index}, term {term}, position {position}")
        return snapshot

    def latest_snapshot(self) -> Optional[Snapshot]:
        """Latest valid snapshot with its service state loaded, or None"""
        with self.lock:
            for snapshot in reversed(self.snapshots):
                if not snapshot.valid:
                    continue
                path = os.path.join(self.cluster_dir, snapshot.file_name)
                if not os.path.exists(path):
                    self.logger.warning(f"Snapshot file missing: {path}")
                    continue
                with open(path, "r", encoding="utf-8") as stream:
                    snapshot.state = json.load(stream)
                return snapshot
        return None

    def tombstone_latest_snapshot(self) -> bool:
        """Mark the latest valid snapshot invalid; False if there is none"""
        with self.lock:
            for snapshot in reversed(self.snapshots):
                if snapshot.valid:
                    snapshot.valid = False
                    self._persist_index()
                    self.logger.info(f"Tombstoned snapshot at index {snapshot.index}")
                    return True
        return False

    def __len__(self) -> int:
        with self.lock:
            return len(self.snapshots)
