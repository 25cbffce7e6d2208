"""
Client Session Driver

Drives one cluster client on behalf of a harness: owns the client's transport
driver and session, counts the egress it receives and layers the offer retry
and keepalive escalation patterns over the condition awaiter.
"""

import logging
import struct
import time
from typing import Any, Callable, Optional

from .addresses import CLIENT_INGRESS_CHANNEL
from .config import ClusterClientContext, DriverContext
from .errors import IllegalStateError
from .polling import ConditionAwaiter, KeepAliveDeadline
from .topology import ClusterTopology

MESSAGE_FORMAT = "<i"


def encode_message(value: int) -> bytes:
    """Payload of the ``value``-th message sent by ``send_messages``"""
    return struct.pack(MESSAGE_FORMAT, value)


class ClientSession:
    """
    Client connection plus the counters the harness awaits on.

    ``response_count`` and ``leadership_event_count`` belong to the session,
    not the connection, so they survive ``reconnect``.

    Args:
        runtime: Launches the client driver and connects the client
        topology: Supplies the client member endpoints
        base_dir: Directory of the client's transport driver
        awaiter: Used for every wait, so interrupts reach them
        keep_alive_interval: Idle seconds before ``await_responses`` sends a keepalive
        clock: Time source of the keepalive deadline
    """

    def __init__(self, runtime: Any, topology: ClusterTopology, base_dir: str,
                 awaiter: ConditionAwaiter, keep_alive_interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self.runtime = runtime
        self.topology = topology
        self.base_dir = base_dir
        self.awaiter = awaiter
        self.keep_alive_interval = keep_alive_interval
        self.clock = clock

        self.driver = None
        self.client = None
        self.response_count = 0
        self.leadership_event_count = 0
        self.logger = logging.getLogger("raft_harness.client")

    # Egress listener

    def on_message(self, session_id: int, timestamp: float, payload: bytes) -> None:
        self.response_count += 1

    def on_new_leader(self, session_id: int, term: int, leader_id: int, endpoints: str) -> None:
        self.leadership_event_count += 1
        self.logger.info(f"Session {session_id} saw new leader {leader_id} in term {term}")

    # Connection

    def is_connected(self) -> bool:
        return self.client is not None and not self.client.is_closed()

    def _connect_session(self) -> Any:
        return self.runtime.connect_client(ClusterClientContext(
            egress_listener=self,
            driver_directory=self.base_dir,
            ingress_channel=CLIENT_INGRESS_CHANNEL,
            cluster_member_endpoints=self.topology.client_member_endpoints,
        ))

    def connect(self) -> Any:
        if self.driver is None or self.driver.is_closed():
            self.driver = self.runtime.launch_driver(DriverContext(directory=self.base_dir))
        self.client = self._connect_session()
        return self.client

    def reconnect(self) -> Any:
        """
        Replace the session with a fresh one; counters are kept.

        Raises:
            IllegalStateError: If the session was never connected
        """
        if self.client is None:
            raise IllegalStateError("client not previously connected")
        self.client.close()
        self.client = self._connect_session()
        return self.client

    def _connected_client(self) -> Any:
        if not self.is_connected():
            raise IllegalStateError("client not connected")
        return self.client

    # Sending

    def send_message(self, payload: bytes) -> None:
        """Offer ``payload`` until accepted, pumping egress while rejected"""
        client = self._connected_client()
        self.awaiter.await_condition(
            lambda: client.offer(payload),
            side_effect=client.poll_egress,
            description="ingress offer accepted",
        )
        client.poll_egress()

    def send_messages(self, count: int) -> None:
        for i in range(count):
            self.send_message(encode_message(i))

    def send_keep_alive(self) -> bool:
        return self._connected_client().send_keep_alive()

    def keep_alive_deadline(self) -> KeepAliveDeadline:
        return KeepAliveDeadline(self.send_keep_alive, self.keep_alive_interval, self.clock)

    # Awaiting

    def await_responses(self, count: int) -> None:
        """
        Wait until ``count`` responses have arrived.

        A keepalive goes out whenever a full interval passes without a new
        response, so an idle session is not expired by the cluster.
        """
        client = self._connected_client()
        deadline = self.keep_alive_deadline()

        def pump() -> None:
            before = self.response_count
            client.poll_egress()
            if self.response_count > before:
                deadline.reset()
            else:
                deadline()

        self.awaiter.await_condition(
            lambda: self.response_count >= count,
            side_effect=pump,
            description=f"{count} responses",
        )

    def await_leadership_event(self, count: int) -> None:
        client = self._connected_client()
        self.awaiter.await_condition(
            lambda: self.leadership_event_count >= count,
            side_effect=client.poll_egress,
            description=f"{count} leadership events",
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
        if self.driver is not None:
            self.driver.close()
