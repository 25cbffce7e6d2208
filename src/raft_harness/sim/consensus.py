"""
Simulated Consensus Module

In-process stand-in for the replication engine of one cluster member:
- Leader election with randomized timeouts, or an appointed leader
- Log replication with commit positions measured in bytes
- Dynamic join of members through the static members' status endpoints
- Control toggle processing (snapshot, shutdown, abort)
- Client sessions, service message delivery and new leader events
- Recovery from the archive and the latest snapshot on restart

Peers talk through handlers bound in the transport registry. Incoming calls
take the module lock with a short timeout so two modules calling each other
can never deadlock; a timed out call is just a lost message.
"""

import dataclasses
import logging
import os
import random
import shutil
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from ..addresses import (
    EndpointFamily,
    MemberEndpoints,
    member_id_of,
    parse_cluster_members,
    parse_member_record,
)
from ..config import ConsensusModuleContext
from ..control import ToggleState
from ..counters import (
    CLUSTER_NODE_ROLE_TYPE_ID,
    COMMIT_POSITION_TYPE_ID,
    CONTROL_TOGGLE_TYPE_ID,
    ELECTION_STATE_TYPE_ID,
    SNAPSHOT_COUNTER_TYPE_ID,
)
from ..errors import ConfigurationError
from ..messages import (
    AppendEntriesRequest,
    AppendEntriesResponse,
    ElectionState,
    EntryType,
    LogEntry,
    NodeRole,
    VoteRequest,
    VoteResponse,
    aligned_frame_length,
)
from .archive import Archive
from .snapshots import RecordingLog, Snapshot
from .transport import MediaDriver

TICK_INTERVAL = 0.01
RPC_LOCK_TIMEOUT = 0.05
JOIN_RETRY_INTERVAL = 0.1
TERMINATE_BROADCAST_TIMEOUT = 1.0
NO_ELECTION = -1


@dataclass
class JoinResponse:
    member_id: int
    leader_id: int
    term: int
    members: Dict[int, str]


@dataclass
class SessionGrant:
    session_id: int
    leader_id: int
    term: int


@dataclass
class BackupResponse:
    leader_id: int
    term: int
    snapshot: Optional[Snapshot]
    commit_position: int


class ConsensusModule:
    """
    One member's replication engine.

    ``members`` maps member id to member status endpoint and always includes
    this member once it has an id. Status accessors read plain attributes or
    counters and never take the lock, so observers are not blocked by
    replication traffic.
    """

    def __init__(self, context: ConsensusModuleContext, driver: MediaDriver, archive: Archive):
        self.context = context
        self.driver = driver
        self.archive = archive

        self.member_id: Optional[int] = context.cluster_member_id
        static_members = parse_cluster_members(context.cluster_members)
        self.members: Dict[int, str] = {m.member_id: m.member_status for m in static_members}
        self.own_endpoints = self._resolve_own_endpoints(static_members)
        self.status_endpoints = [e for e in context.cluster_members_status_endpoints.split(",") if e]
        self.appointed_leader_id = context.appointed_leader_id

        # Recovered persistent state
        self.log: List[LogEntry] = archive.entries()
        self.current_term = self.log[-1].term if self.log else 0
        self.voted_for: Optional[int] = None
        self.commit_index = len(self.log) - 1
        self._recovered_index = self.commit_index
        self.last_applied = -1

        # Volatile state
        self.role = NodeRole.FOLLOWER
        self.leader_id: Optional[int] = None
        self.next_index: Dict[int, int] = {}
        self.match_index: Dict[int, int] = {}
        self.votes_received: Set[int] = set()
        self._election_state: Optional[ElectionState] = ElectionState.INIT

        self.election_timeout_range = context.election_timeout_range
        self.heartbeat_interval = context.heartbeat_interval
        self.election_timeout = self._get_election_timeout()
        self.last_heartbeat = time.time()
        self._last_join_attempt = 0.0

        self.sessions: Dict[int, str] = {}
        self.next_session_id = 1
        self.keep_alives_received = 0

        self.service_container = None
        self.recording_log: Optional[RecordingLog] = None
        self._pending_action: Optional[ToggleState] = None
        self._terminate_pending = False
        self._terminate_acked: Set[int] = set()
        self._terminate_deadline = 0.0
        self.terminated = False

        self.lock = threading.RLock()
        self.running = False
        self._closed = False
        self.thread: Optional[threading.Thread] = None

        self.logger = logging.getLogger(f"raft_harness.sim.consensus.{self.member_id}")

    def _resolve_own_endpoints(self, static_members: List[MemberEndpoints]) -> MemberEndpoints:
        if self.member_id is None:
            if not self.context.member_endpoints:
                raise ConfigurationError("dynamic member needs its member endpoints")
            return parse_member_record(-1, self.context.member_endpoints)

        for member in static_members:
            if member.member_id == self.member_id:
                return member
        raise ConfigurationError(
            f"member {self.member_id} is not in cluster members {self.context.cluster_members!r}"
        )

    def _get_election_timeout(self) -> float:
        """Randomized election timeout to prevent split votes"""
        return random.uniform(*self.election_timeout_range)

    # Lifecycle

    def start(self) -> "ConsensusModule":
        cluster_dir = self.context.cluster_dir
        if self.context.delete_dir_on_start and os.path.isdir(cluster_dir):
            shutil.rmtree(cluster_dir)
        os.makedirs(cluster_dir, exist_ok=True)
        self.recording_log = RecordingLog(cluster_dir)

        counters = self.driver.counters
        self.control_toggle = counters.allocate(
            CONTROL_TOGGLE_TYPE_ID, "Cluster control toggle", ToggleState.NEUTRAL.code
        )
        self.snapshot_counter = counters.allocate(SNAPSHOT_COUNTER_TYPE_ID, "Snapshot count")
        self.commit_position_counter = counters.allocate(
            COMMIT_POSITION_TYPE_ID, "Cluster commit-pos", self._position_of(self.commit_index)
        )
        self.election_state_counter = counters.allocate(
            ELECTION_STATE_TYPE_ID, "Cluster election state", ElectionState.INIT.value
        )
        self.role_counter = counters.allocate(
            CLUSTER_NODE_ROLE_TYPE_ID, "Cluster node role", NodeRole.FOLLOWER.value
        )

        self.driver.bind(self.own_endpoints.member_status, self)
        self.driver.bind(self.own_endpoints.ingress, self)
        self.driver.bind_local("consensus-module", self)

        if self.appointed_leader_id is not None and self.appointed_leader_id == self.member_id:
            self.election_timeout = 0.0

        self.running = True
        self.last_heartbeat = time.time()
        self.thread = threading.Thread(
            target=self._run, name=f"consensus-module-{self.member_id}", daemon=True
        )
        self.thread.start()

        self.logger.info(
            f"Consensus module started: member={self.member_id} members={sorted(self.members)} "
            f"recovered_entries={len(self.log)}"
        )
        return self

    def attach_service(self, container) -> None:
        """Start ``container``'s service from the latest snapshot, then replay"""
        with self.lock:
            snapshot = self.recording_log.latest_snapshot()
            if snapshot is not None and snapshot.index > self.commit_index:
                self.logger.warning(
                    f"Ignoring snapshot at index {snapshot.index} beyond log end {self.commit_index}"
                )
                snapshot = None

            self.service_container = container
            container.on_start(snapshot.state if snapshot else None)
            self.last_applied = snapshot.index if snapshot else -1

            if snapshot is not None:
                self.logger.info(f"Service loaded snapshot at index {snapshot.index}")

    def detach_service(self, container) -> None:
        with self.lock:
            if self.service_container is container:
                self.service_container = None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.running = False
        if self.thread is not None and self.thread.is_alive():
            self.thread.join(timeout=1.0)

        self.driver.unbind(self.own_endpoints.member_status, self)
        self.driver.unbind(self.own_endpoints.ingress, self)
        self.driver.unbind_local("consensus-module")
        for counter in (self.control_toggle, self.snapshot_counter, self.commit_position_counter,
                        self.election_state_counter, self.role_counter):
            counter.close()

        self.logger.info(f"Consensus module {self.member_id} closed")

    # Main loop

    def _run(self) -> None:
        while self.running:
            try:
                with self.lock:
                    if self.member_id is None:
                        self._try_join()
                    elif self.role == NodeRole.FOLLOWER:
                        self._handle_follower_state()
                    elif self.role == NodeRole.CANDIDATE:
                        self._handle_candidate_state()
                    elif self.role == NodeRole.LEADER:
                        self._handle_leader_state()

                    self._record_committed_entries()
                    self._apply_committed_entries()

                time.sleep(TICK_INTERVAL)

            except Exception as e:
                self.logger.error(f"Error in consensus loop: {e}")
                time.sleep(0.1)

    def _handle_follower_state(self) -> None:
        if self._election_state == ElectionState.INIT:
            self._set_election_state(ElectionState.CANVASS)

        if self.appointed_leader_id is not None and self.appointed_leader_id != self.member_id:
            return

        if time.time() - self.last_heartbeat > self.election_timeout:
            self.logger.info(f"Election timeout ({self.election_timeout:.3f}s), becoming candidate")
            self._become_candidate()

    def _handle_candidate_state(self) -> None:
        if time.time() - self.last_heartbeat > self.election_timeout:
            self._start_election()

    def _handle_leader_state(self) -> None:
        if self._terminate_pending:
            for member_id in self._peer_ids():
                if member_id not in self._terminate_acked:
                    self._send_append_entries(member_id)
            if self._terminate_acked.issuperset(self._peer_ids()) or time.time() > self._terminate_deadline:
                self.running = False
                self.logger.info(f"Leader {self.member_id} terminated")
            return

        now = time.time()
        pending = any(self.next_index.get(m, 0) < len(self.log) for m in self._peer_ids())
        if pending or now - self.last_heartbeat > self.heartbeat_interval:
            self._replicate()
            self.last_heartbeat = now

        self._advance_commit_index()
        self._process_control_toggle()

    # Elections

    def _become_candidate(self) -> None:
        self._set_role(NodeRole.CANDIDATE)
        self._set_election_state(ElectionState.CANDIDATE_BALLOT)
        self.current_term += 1
        self.voted_for = self.member_id
        self.votes_received = {self.member_id}
        self.leader_id = None
        self.election_timeout = self._get_election_timeout()
        self.last_heartbeat = time.time()

        self.logger.info(f"Became CANDIDATE for term {self.current_term}")
        self._start_election()

    def _start_election(self) -> None:
        last_log_index = len(self.log) - 1
        last_log_term = self.log[-1].term if self.log else 0

        request = VoteRequest(
            term=self.current_term,
            candidate_id=self.member_id,
            last_log_index=last_log_index,
            last_log_term=last_log_term,
        )

        for member_id in self._peer_ids():
            peer = self._peer(member_id)
            if peer is None:
                continue
            try:
                response = peer.handle_vote_request(request)
                if response.vote_granted and response.term == self.current_term:
                    self.votes_received.add(member_id)
                elif response.term > self.current_term:
                    self._become_follower(response.term)
                    return
            except Exception as e:
                self.logger.debug(f"Failed to get vote from {member_id}: {e}")

        if len(self.votes_received) >= self._majority():
            self._become_leader()
        elif time.time() - self.last_heartbeat > self.election_timeout:
            self.logger.debug(
                f"Election failed, got {len(self.votes_received)}/{self._majority()} votes"
            )
            self._become_follower()

    def _become_leader(self) -> None:
        if self.role != NodeRole.CANDIDATE:
            return

        self._set_role(NodeRole.LEADER)
        self._set_election_state(ElectionState.LEADER_READY)
        self.leader_id = self.member_id
        for member_id in self._peer_ids():
            self.next_index[member_id] = len(self.log)
            self.match_index[member_id] = -1

        session_ids = [e.session_id for e in self.log if e.entry_type == EntryType.SESSION_OPEN]
        self.next_session_id = max(session_ids, default=0) + 1

        self._append(EntryType.NEW_LEADERSHIP_TERM, data={"leader_id": self.member_id})
        self.logger.info(f"Became LEADER for term {self.current_term}")

        self._replicate()
        self.last_heartbeat = time.time()

    def _become_follower(self, new_term: Optional[int] = None) -> None:
        if new_term is not None and new_term > self.current_term:
            self.current_term = new_term
            self.voted_for = None
        if self.role != NodeRole.FOLLOWER:
            self.logger.debug(f"Became FOLLOWER for term {self.current_term}")
        self._set_role(NodeRole.FOLLOWER)
        self.votes_received.clear()
        self.last_heartbeat = time.time()
        self.election_timeout = self._get_election_timeout()

    def _try_join(self) -> None:
        now = time.time()
        if now - self._last_join_attempt < JOIN_RETRY_INTERVAL:
            return
        self._last_join_attempt = now

        for endpoint in self.status_endpoints:
            peer = self.driver.resolve(endpoint)
            if peer is None:
                continue
            try:
                response = peer.handle_join_request(self.own_endpoints.to_record())
            except Exception as e:
                self.logger.debug(f"Join through {endpoint} failed: {e}")
                continue

            if response is not None:
                self.member_id = response.member_id
                self.members = dict(response.members)
                self.leader_id = response.leader_id
                self.current_term = response.term
                self.own_endpoints = dataclasses.replace(self.own_endpoints, member_id=response.member_id)
                self.last_heartbeat = time.time()
                self._set_election_state(ElectionState.FOLLOWER_CATCHUP)
                self.logger = logging.getLogger(f"raft_harness.sim.consensus.{self.member_id}")
                self.logger.info(f"Joined cluster as member {self.member_id} via leader {response.leader_id}")
                return

    # Replication

    def _replicate(self) -> None:
        for member_id in self._peer_ids():
            self._send_append_entries(member_id)

    def _send_append_entries(self, member_id: int) -> None:
        peer = self._peer(member_id)
        if peer is None:
            return

        try:
            next_index = self.next_index.get(member_id, len(self.log))
            prev_log_index = next_index - 1
            prev_log_term = self.log[prev_log_index].term if prev_log_index >= 0 else 0

            request = AppendEntriesRequest(
                term=self.current_term,
                leader_id=self.member_id,
                prev_log_index=prev_log_index,
                prev_log_term=prev_log_term,
                entries=self.log[next_index:],
                leader_commit=self.commit_index,
                members=dict(self.members),
            )

            response = peer.handle_append_entries(request)

            if response.term > self.current_term:
                self._become_follower(response.term)
                return

            if response.success:
                self.match_index[member_id] = response.match_index
                self.next_index[member_id] = response.match_index + 1
                self._advance_commit_index()
                if self._terminate_pending and response.match_index >= self.commit_index:
                    self._terminate_acked.add(member_id)
            else:
                self.next_index[member_id] = max(0, next_index - 1)
                self.logger.debug(
                    f"AppendEntries failed for {member_id}, retry with index {self.next_index[member_id]}"
                )

        except Exception as e:
            self.logger.debug(f"Failed to send AppendEntries to {member_id}: {e}")

    def _advance_commit_index(self) -> None:
        if self.role != NodeRole.LEADER:
            return

        for index in range(self.commit_index + 1, len(self.log)):
            if self.log[index].term != self.current_term:
                continue

            replicated_count = 1
            for member_id in self._peer_ids():
                if self.match_index.get(member_id, -1) >= index:
                    replicated_count += 1

            if replicated_count >= self._majority():
                self._set_commit_index(index)
            else:
                break

    def _record_committed_entries(self) -> None:
        for index in range(len(self.archive), self.commit_index + 1):
            self.archive.record(self.log[index])

    def _apply_committed_entries(self) -> None:
        while (self.service_container is not None and not self.terminated
               and self.last_applied < self.commit_index):
            self.last_applied += 1
            self._apply_entry(self.log[self.last_applied])

    def _apply_entry(self, entry: LogEntry) -> None:
        live = entry.index > self._recovered_index and entry.term == self.current_term
        service = self.service_container.service

        if entry.entry_type == EntryType.NEW_LEADERSHIP_TERM:
            service.on_new_leadership_term(entry.term, entry.data.get("leader_id"))
            if live and self.role == NodeRole.LEADER:
                self._set_election_state(None)
                self._notify_new_leader()
        elif entry.entry_type == EntryType.SESSION_OPEN:
            self.sessions[entry.session_id] = entry.data["egress"]
            service.on_session_open(entry.session_id)
        elif entry.entry_type == EntryType.SESSION_MESSAGE:
            service.on_session_message(entry.session_id, entry.payload)
        elif entry.entry_type == EntryType.SESSION_CLOSE:
            self.sessions.pop(entry.session_id, None)
            service.on_session_close(entry.session_id)
        elif entry.entry_type == EntryType.MEMBERSHIP_CHANGE and live:
            self.members = {int(k): v for k, v in entry.data["members"].items()}
        elif entry.entry_type == EntryType.SNAPSHOT and live:
            self._take_snapshot(entry)
        elif entry.entry_type == EntryType.TERMINATE and live:
            self._terminate(entry)

    def _append(self, entry_type: EntryType, session_id: int = 0,
                payload: bytes = b"", data: Optional[dict] = None) -> LogEntry:
        previous_position = self.log[-1].position if self.log else 0
        entry = LogEntry(
            term=self.current_term,
            index=len(self.log),
            entry_type=entry_type,
            position=previous_position + aligned_frame_length(len(payload)),
            session_id=session_id,
            payload=payload,
            data=data or {},
        )
        self.log.append(entry)
        self.logger.debug(f"Appended {entry}")
        return entry

    # Control toggle, snapshots and termination

    def _process_control_toggle(self) -> None:
        if self._election_state is not None or self._pending_action is not None or self.terminated:
            return

        try:
            state = ToggleState.get(self.control_toggle)
        except ValueError:
            self.logger.warning(f"Unknown control toggle code {self.control_toggle.get()}")
            return

        if state == ToggleState.SNAPSHOT:
            self._append(EntryType.SNAPSHOT)
        elif state == ToggleState.SHUTDOWN:
            self._append(EntryType.SNAPSHOT)
            self._append(EntryType.TERMINATE, data={"action": "shutdown"})
        elif state == ToggleState.ABORT:
            self._append(EntryType.TERMINATE, data={"action": "abort"})
        else:
            return

        self._pending_action = state
        self.logger.info(f"Processing control toggle {state.name}")

    def _take_snapshot(self, entry: LogEntry) -> None:
        state = self.service_container.service.on_take_snapshot()
        self.recording_log.append_snapshot(
            entry.index, entry.term, entry.position, state, {"member_id": self.member_id}
        )
        self.snapshot_counter.increment()

        if self.role == NodeRole.LEADER and self._pending_action == ToggleState.SNAPSHOT:
            ToggleState.SNAPSHOT.reset(self.control_toggle)
            self._pending_action = None

    def _terminate(self, entry: LogEntry) -> None:
        self.service_container.terminate()
        self.terminated = True
        self.logger.info(f"Member {self.member_id} terminated by {entry.data.get('action')}")

        if self.role == NodeRole.LEADER:
            if self._pending_action is not None:
                self._pending_action.reset(self.control_toggle)
                self._pending_action = None
            self._terminate_pending = True
            self._terminate_deadline = time.time() + TERMINATE_BROADCAST_TIMEOUT
        else:
            self.running = False

    # Incoming peer RPCs

    def _acquire(self) -> None:
        if not self.lock.acquire(timeout=RPC_LOCK_TIMEOUT):
            raise TimeoutError(f"member {self.member_id} busy")

    def handle_vote_request(self, request: VoteRequest) -> VoteResponse:
        self._acquire()
        try:
            if not self.running or self.terminated or self.member_id is None:
                return VoteResponse(self.current_term, False)

            if request.term > self.current_term:
                self._become_follower(request.term)

            vote_granted = False
            if request.term == self.current_term and self.voted_for in (None, request.candidate_id):
                if self._is_candidate_log_up_to_date(request.last_log_term, request.last_log_index):
                    vote_granted = True
                    self.voted_for = request.candidate_id
                    self.last_heartbeat = time.time()
                    self._set_election_state(ElectionState.FOLLOWER_BALLOT)

            return VoteResponse(self.current_term, vote_granted)
        finally:
            self.lock.release()

    def _is_candidate_log_up_to_date(self, candidate_last_term: int, candidate_last_index: int) -> bool:
        if not self.log:
            return True

        our_last_term = self.log[-1].term
        our_last_index = len(self.log) - 1
        return (candidate_last_term > our_last_term or
                (candidate_last_term == our_last_term and candidate_last_index >= our_last_index))

    def handle_append_entries(self, request: AppendEntriesRequest) -> AppendEntriesResponse:
        self._acquire()
        try:
            if not self.running or self.terminated or self.member_id is None:
                return AppendEntriesResponse(self.current_term, False)

            if request.term > self.current_term:
                self._become_follower(request.term)

            if request.term < self.current_term:
                return AppendEntriesResponse(self.current_term, False)

            if self.role != NodeRole.FOLLOWER:
                self._become_follower()
            self.leader_id = request.leader_id
            self.last_heartbeat = time.time()
            if request.members:
                self.members = dict(request.members)

            prev_log_ok = request.prev_log_index == -1 or (
                request.prev_log_index < len(self.log)
                and self.log[request.prev_log_index].term == request.prev_log_term
            )
            if not prev_log_ok:
                return AppendEntriesResponse(self.current_term, False)

            start = request.prev_log_index + 1
            for offset, entry in enumerate(request.entries):
                index = start + offset
                if index < len(self.log):
                    if self.log[index].term == entry.term:
                        continue
                    self.log = self.log[:index]
                self.log.append(entry)

            match_index = request.prev_log_index + len(request.entries)
            if request.leader_commit > self.commit_index:
                self._set_commit_index(min(request.leader_commit, match_index))

            self._set_election_state(None)
            return AppendEntriesResponse(self.current_term, True, match_index)
        finally:
            self.lock.release()

    def handle_join_request(self, member_endpoints: str) -> Optional[JoinResponse]:
        self._acquire()
        try:
            if not self._is_stable_leader():
                return None

            endpoints = parse_member_record(-1, member_endpoints)
            for member_id, status_endpoint in self.members.items():
                if status_endpoint == endpoints.member_status:
                    return JoinResponse(member_id, self.member_id, self.current_term, dict(self.members))

            new_id = member_id_of(EndpointFamily.MEMBER_STATUS, endpoints.member_status)
            if new_id in self.members:
                self.logger.warning(
                    f"Join from {endpoints.member_status} rejected, member {new_id} already present"
                )
                return None

            self.members[new_id] = endpoints.member_status
            self.next_index[new_id] = 0
            self.match_index[new_id] = -1
            self._append(
                EntryType.MEMBERSHIP_CHANGE,
                data={"members": {str(k): v for k, v in self.members.items()}},
            )
            self.logger.info(f"Member {new_id} joining at {endpoints.member_status}")
            return JoinResponse(new_id, self.member_id, self.current_term, dict(self.members))
        finally:
            self.lock.release()

    def handle_backup_query(self) -> Optional[BackupResponse]:
        self._acquire()
        try:
            if not self._is_stable_leader():
                return None
            return BackupResponse(
                leader_id=self.member_id,
                term=self.current_term,
                snapshot=self.recording_log.latest_snapshot(),
                commit_position=self._position_of(self.commit_index),
            )
        finally:
            self.lock.release()

    def handle_log_fetch(self, from_index: int) -> Optional[List[LogEntry]]:
        """Committed entries from ``from_index``; None unless stable leader"""
        self._acquire()
        try:
            if not self._is_stable_leader():
                return None
            return list(self.log[from_index:self.commit_index + 1])
        finally:
            self.lock.release()

    # Client ingress

    def handle_session_connect(self, egress_endpoint: str) -> Optional[SessionGrant]:
        if not self.lock.acquire(timeout=RPC_LOCK_TIMEOUT):
            return None
        try:
            if not self._is_stable_leader():
                return None
            session_id = self.next_session_id
            self.next_session_id += 1
            self.sessions[session_id] = egress_endpoint
            self._append(EntryType.SESSION_OPEN, session_id=session_id, data={"egress": egress_endpoint})
            self.logger.info(f"Opened client session {session_id}")
            return SessionGrant(session_id, self.member_id, self.current_term)
        finally:
            self.lock.release()

    def handle_ingress(self, session_id: int, payload: bytes) -> bool:
        if not self.lock.acquire(timeout=RPC_LOCK_TIMEOUT):
            return False
        try:
            if not self._is_stable_leader() or session_id not in self.sessions:
                return False
            self._append(EntryType.SESSION_MESSAGE, session_id=session_id, payload=bytes(payload))
            return True
        finally:
            self.lock.release()

    def handle_keep_alive(self, session_id: int) -> bool:
        if not self.lock.acquire(timeout=RPC_LOCK_TIMEOUT):
            return False
        try:
            if not self._is_stable_leader() or session_id not in self.sessions:
                return False
            self.keep_alives_received += 1
            return True
        finally:
            self.lock.release()

    def handle_session_close(self, session_id: int) -> bool:
        if not self.lock.acquire(timeout=RPC_LOCK_TIMEOUT):
            return False
        try:
            if not self._is_stable_leader() or session_id not in self.sessions:
                return False
            self._append(EntryType.SESSION_CLOSE, session_id=session_id)
            return True
        finally:
            self.lock.release()

    def send_egress(self, session_id: int, payload: bytes) -> bool:
        if self.role != NodeRole.LEADER or not self.running:
            return False
        client = self.driver.resolve(self.sessions.get(session_id, ""))
        if client is None:
            return False
        client.on_egress_message(session_id, time.time(), payload)
        return True

    def _notify_new_leader(self) -> None:
        for session_id, endpoint in list(self.sessions.items()):
            client = self.driver.resolve(endpoint)
            if client is not None:
                client.on_new_leader_event(
                    session_id, self.current_term, self.member_id, self.own_endpoints.ingress
                )

    # Helpers and status

    def _peer_ids(self) -> List[int]:
        return [m for m in self.members if m != self.member_id]

    def _peer(self, member_id: int):
        endpoint = self.members.get(member_id)
        return self.driver.resolve(endpoint) if endpoint else None

    def _majority(self) -> int:
        return len(self.members) // 2 + 1

    def _is_stable_leader(self) -> bool:
        return (self.running and not self.terminated and self.role == NodeRole.LEADER
                and self._election_state is None)

    def _position_of(self, index: int) -> int:
        return self.log[index].position if index >= 0 else 0

    def _set_commit_index(self, index: int) -> None:
        if index > self.commit_index:
            self.commit_index = index
            self.commit_position_counter.set(self._position_of(index))

    def _set_role(self, role: NodeRole) -> None:
        self.role = role
        self.role_counter.set(role.value)

    def _set_election_state(self, state: Optional[ElectionState]) -> None:
        self._election_state = state
        self.election_state_counter.set(NO_ELECTION if state is None else state.value)

    def election_state(self) -> Optional[ElectionState]:
        return self._election_state

    def is_leader(self) -> bool:
        return self.role == NodeRole.LEADER

    def commit_position(self) -> int:
        return self.commit_position_counter.get()

    def snapshot_count(self) -> int:
        return self.snapshot_counter.get()

    def has_terminated(self) -> bool:
        return self.terminated

    def is_closed(self) -> bool:
        return self._closed

    def __str__(self) -> str:
        return f"ConsensusModule({self.member_id}, {self.role.name}, term={self.current_term})"
