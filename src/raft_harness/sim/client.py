"""
Simulated Cluster Client

Opens a session with whichever member leads, offers messages to it and
receives egress asynchronously: members push responses and new leader events
onto a queue from their own threads, and nothing reaches the egress listener
until the owner calls ``poll_egress``.
"""

import logging
import threading
import time
import uuid
from collections import deque
from typing import Deque, Optional, Tuple

from ..addresses import parse_client_member_endpoints
from ..config import ClusterClientContext
from .transport import MediaDriver

_MESSAGE = "message"
_NEW_LEADER = "new_leader"


class LocalClusterClient:

    def __init__(self, context: ClusterClientContext, driver: MediaDriver):
        self.context = context
        self.driver = driver
        self.member_endpoints = parse_client_member_endpoints(context.cluster_member_endpoints)
        self.egress_endpoint = f"client-egress:{uuid.uuid4().hex}"
        self.session_id: Optional[int] = None
        self.leader_member_id: Optional[int] = None
        self.leadership_term_id = -1
        self._egress: Deque[Tuple] = deque()
        self._lock = threading.Lock()
        self._closed = False
        self.logger = logging.getLogger("raft_harness.sim.client")

    def connect(self) -> "LocalClusterClient":
        """
        Open a session with the current leader.

        Raises:
            TimeoutError: If no member grants a session within the context's
                message timeout
        """
        self.driver.bind(self.egress_endpoint, self)
        deadline = time.monotonic() + self.context.message_timeout

        while True:
            for member_id, endpoint in self.member_endpoints.items():
                member = self.driver.resolve(endpoint)
                if member is None:
                    continue
                grant = member.handle_session_connect(self.egress_endpoint)
                if grant is not None:
                    self.session_id = grant.session_id
                    self.leader_member_id = grant.leader_id
                    self.leadership_term_id = grant.term
                    self.logger.info(
                        f"Connected session {self.session_id} to leader {self.leader_member_id}"
                    )
                    return self

            if time.monotonic() > deadline:
                self.driver.unbind(self.egress_endpoint, self)
                raise TimeoutError(
                    f"no leader accepted a session within {self.context.message_timeout}s"
                )
            time.sleep(0.01)

    def _leader(self):
        if self.leader_member_id is None:
            return None
        return self.driver.resolve(self.member_endpoints.get(self.leader_member_id, ""))

    def _rediscover_leader(self) -> None:
        for member_id, endpoint in self.member_endpoints.items():
            member = self.driver.resolve(endpoint)
            if member is not None and member.is_leader() and member.election_state() is None:
                self.leader_member_id = member_id
                return

    def offer(self, payload: bytes) -> bool:
        """Non-blocking send; False means back pressure or no leader"""
        if self._closed:
            return False
        leader = self._leader()
        if leader is None or not leader.handle_ingress(self.session_id, payload):
            self._rediscover_leader()
            return False
        return True

    def send_keep_alive(self) -> bool:
        leader = self._leader()
        return leader is not None and leader.handle_keep_alive(self.session_id)

    def poll_egress(self) -> int:
        """Deliver queued egress to the listener; returns the number delivered"""
        with self._lock:
            events = list(self._egress)
            self._egress.clear()

        listener = self.context.egress_listener
        for event in events:
            if event[0] == _MESSAGE:
                _, session_id, timestamp, payload = event
                listener.on_message(session_id, timestamp, payload)
            else:
                _, session_id, term, leader_id, endpoints = event
                self.leader_member_id = leader_id
                self.leadership_term_id = term
                listener.on_new_leader(session_id, term, leader_id, endpoints)

        return len(events)

    def on_egress_message(self, session_id: int, timestamp: float, payload: bytes) -> None:
        with self._lock:
            self._egress.append((_MESSAGE, session_id, timestamp, payload))

    def on_new_leader_event(self, session_id: int, term: int, leader_id: int, endpoints: str) -> None:
        with self._lock:
            self._egress.append((_NEW_LEADER, session_id, term, leader_id, endpoints))

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        leader = self._leader()
        if leader is not None and self.session_id is not None:
            leader.handle_session_close(self.session_id)
        self.driver.unbind(self.egress_endpoint, self)
        self.logger.info(f"Client session {self.session_id} closed")
