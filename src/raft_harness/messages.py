"""
Replication Messages and Status Types

Data structures exchanged between the simulated consensus modules and the
status types the harness reads back from every node. Log positions are byte
positions: each entry occupies a frame of ``FRAME_HEADER_LENGTH`` plus its
payload, padded to ``FRAME_ALIGNMENT``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

FRAME_HEADER_LENGTH = 32
FRAME_ALIGNMENT = 32


def aligned_frame_length(payload_length: int) -> int:
    length = FRAME_HEADER_LENGTH + payload_length
    return (length + FRAME_ALIGNMENT - 1) & ~(FRAME_ALIGNMENT - 1)


class NodeRole(Enum):
    """Consensus role of a cluster member"""
    FOLLOWER = 0
    CANDIDATE = 1
    LEADER = 2


class ElectionState(Enum):
    """Phases of an in-progress election; a stable node has none"""
    INIT = 0
    CANVASS = 1
    NOMINATE = 2
    CANDIDATE_BALLOT = 3
    FOLLOWER_BALLOT = 4
    LEADER_READY = 5
    FOLLOWER_CATCHUP = 6


class BackupState(Enum):
    """Progress of a cluster backup node"""
    INIT = 0
    BACKUP_QUERY = 1
    SNAPSHOT_RETRIEVE = 2
    LIVE_LOG_REPLAY = 3
    UPDATE_RECORDING_LOG = 4
    BACKING_UP = 5
    RESET_BACKUP = 6
    CLOSED = 7


class EntryType(Enum):
    """Kinds of entries appended to the replicated log"""
    NEW_LEADERSHIP_TERM = "new_leadership_term"
    SESSION_OPEN = "session_open"
    SESSION_MESSAGE = "session_message"
    SESSION_CLOSE = "session_close"
    MEMBERSHIP_CHANGE = "membership_change"
    SNAPSHOT = "snapshot"
    TERMINATE = "terminate"


@dataclass
class LogEntry:
    """
    Represents a single entry in the replicated log.

    ``position`` is the log position just after this entry, so the position of
    the last committed entry is the commit position.
    """
    term: int
    index: int
    entry_type: EntryType
    position: int
    session_id: int = 0
    payload: bytes = b""
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "term": self.term,
            "index": self.index,
            "type": self.entry_type.value,
            "position": self.position,
            "session_id": self.session_id,
            "payload": self.payload.hex(),
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            term=data["term"],
            index=data["index"],
            entry_type=EntryType(data["type"]),
            position=data["position"],
            session_id=data.get("session_id", 0),
            payload=bytes.fromhex(data.get("payload", "")),
            data=data.get("data", {}),
        )

    def __str__(self) -> str:
        return f"LogEntry(term={self.term}, index={self.index}, type={self.entry_type.value})"


@dataclass
class VoteRequest:
    term: int              # Candidate's term
    candidate_id: int      # Candidate requesting vote
    last_log_index: int    # Index of candidate's last log entry
    last_log_term: int     # Term of candidate's last log entry


@dataclass
class VoteResponse:
    term: int
    vote_granted: bool


@dataclass
class AppendEntriesRequest:
    """
    Sent by the leader to replicate entries; an empty entry list is a
    heartbeat. ``members`` carries the leader's view of membership so members
    added by a dynamic join propagate without a separate protocol.
    """
    term: int
    leader_id: int
    prev_log_index: int
    prev_log_term: int
    entries: List[LogEntry]
    leader_commit: int
    members: Dict[int, str] = field(default_factory=dict)


@dataclass
class AppendEntriesResponse:
    term: int
    success: bool
    match_index: int = -1


@dataclass
class NodeStats:
    """Point-in-time status of one harness slot"""
    member_id: int
    role: Optional[NodeRole]
    election_state: Optional[ElectionState]
    commit_position: int
    snapshot_count: int
    message_count: int
    closed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "role": self.role.name if self.role else None,
            "election_state": self.election_state.name if self.election_state else None,
            "commit_position": self.commit_position,
            "snapshot_count": self.snapshot_count,
            "message_count": self.message_count,
            "closed": self.closed,
        }


@dataclass
class ClusterStats:
    """Statistics for every occupied slot of a harness"""
    total_slots: int
    active_nodes: int
    leader_id: Optional[int]
    backup_state: Optional[BackupState]
    nodes: Dict[int, NodeStats]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_slots": self.total_slots,
            "active_nodes": self.active_nodes,
            "leader_id": self.leader_id,
            "backup_state": self.backup_state.name if self.backup_state else None,
            "nodes": {member_id: stats.to_dict() for member_id, stats in self.nodes.items()},
        }
