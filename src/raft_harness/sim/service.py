"""
Clustered Services

A clustered service is the replicated state machine: it receives every
committed client message in log order on every member. The container hosts
one service next to its member's consensus module and relays responses back
to clients.
"""

import logging
import threading
from typing import Any, Dict, Optional

from ..config import ServiceContainerContext
from ..errors import IllegalStateError
from .transport import MediaDriver


class ClusteredService:
    """Base service; override the hooks you need"""

    member_id: Optional[int] = None

    def on_start(self, container: "ClusteredServiceContainer", snapshot: Optional[Dict[str, Any]]) -> None:
        self.container = container

    def on_session_open(self, session_id: int) -> None:
        pass

    def on_session_message(self, session_id: int, payload: bytes) -> None:
        pass

    def on_session_close(self, session_id: int) -> None:
        pass

    def on_take_snapshot(self) -> Dict[str, Any]:
        return {}

    def on_new_leadership_term(self, term: int, leader_id: int) -> None:
        pass

    def on_terminate(self) -> None:
        pass


class TestService(ClusteredService):
    """
    Counts messages, echoes each one back to its session, and snapshots the
    count so a restarted member resumes from it.
    """

    __test__ = False

    def __init__(self):
        self.container: Optional["ClusteredServiceContainer"] = None
        self._message_count = 0
        self._snapshot_taken = False
        self._snapshot_loaded = False
        self._lock = threading.Lock()

    def on_start(self, container, snapshot):
        super().on_start(container, snapshot)
        if snapshot is not None:
            with self._lock:
                self._message_count = snapshot.get("message_count", 0)
                self._snapshot_loaded = True

    def on_session_message(self, session_id, payload):
        with self._lock:
            self._message_count += 1
        self.container.egress(session_id, payload)

    def on_take_snapshot(self):
        with self._lock:
            self._snapshot_taken = True
            return {"message_count": self._message_count}

    def message_count(self) -> int:
        with self._lock:
            return self._message_count

    def was_snapshot_taken(self) -> bool:
        return self._snapshot_taken

    def was_snapshot_loaded(self) -> bool:
        return self._snapshot_loaded


class ClusteredServiceContainer:
    """Hosts a service and attaches it to the member's consensus module"""

    def __init__(self, context: ServiceContainerContext, driver: MediaDriver):
        self.context = context
        self.driver = driver
        self.service = context.service
        self.consensus_module = None
        self._terminated = False
        self._closed = False
        self.logger = logging.getLogger(
            f"raft_harness.sim.service.{getattr(self.service, 'member_id', None)}"
        )

    def start(self) -> "ClusteredServiceContainer":
        self.consensus_module = self.driver.resolve_local("consensus-module")
        if self.consensus_module is None:
            raise IllegalStateError(
                f"no consensus module running on driver {self.driver.directory}"
            )
        self.consensus_module.attach_service(self)
        return self

    def on_start(self, snapshot: Optional[Dict[str, Any]]) -> None:
        self.service.on_start(self, snapshot)

    def egress(self, session_id: int, payload: bytes) -> bool:
        """Send ``payload`` to a client session; only the leader delivers"""
        if self.consensus_module is None:
            return False
        return self.consensus_module.send_egress(session_id, payload)

    def terminate(self) -> None:
        self.service.on_terminate()
        self._terminated = True
        self.logger.info("Service terminated")

    def has_terminated(self) -> bool:
        return self._terminated

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.consensus_module is not None:
            self.consensus_module.detach_service(self)
