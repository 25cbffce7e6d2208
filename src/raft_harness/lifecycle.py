"""
Node Lifecycle

Builds the composed context for a cluster member (static, dynamic, backup or
restored from backup) and starts or stops it in its slot.

Member ``id`` keeps all of its state in two sibling directories of the
harness base dir: ``<base>-<id>`` (archive, consensus module or cluster backup,
service) and ``<base>-<id>-driver`` for the transport driver. The context
builders are pure functions; only ``NodeLifecycleManager`` starts anything.
"""

import logging
import os
from typing import Any, Callable, List, Optional, Tuple

from .addresses import (
    ARCHIVE_CONTROL_REQUEST_CHANNEL,
    ARCHIVE_CONTROL_REQUEST_STREAM_ID,
    ARCHIVE_CONTROL_RESPONSE_CHANNEL,
    ARCHIVE_CONTROL_RESPONSE_STREAM_ID_BASE,
    INGRESS_CHANNEL,
    LOCAL_CONTROL_CHANNEL,
    LOG_CHANNEL,
    backup_status_endpoint,
    backup_transfer_endpoint,
    member_specific_port,
    single_node_cluster_members_string,
)
from .config import (
    SEGMENT_FILE_LENGTH,
    ArchiveClientContext,
    ArchiveContext,
    BackupNodeContext,
    ClusterBackupContext,
    ConsensusModuleContext,
    DriverContext,
    HarnessConfig,
    NodeContext,
    ServiceContainerContext,
)
from .node import ClusterBackupNode, ClusterNode
from .topology import ClusterTopology, NodeSlots

CONSENSUS_MODULE_DIR = "consensus-module"
CLUSTER_BACKUP_DIR = "cluster-backup"
ARCHIVE_DIR = "archive"
SERVICE_DIR = "service"

MEMBER_STATUS_CHANNEL = "raft:udp?term-length=64k"


def member_dirs(base_dir: str, member_id: int) -> Tuple[str, str]:
    """The ``(member dir, driver dir)`` pair of ``member_id``"""
    member_dir = f"{base_dir}-{member_id}"
    return member_dir, f"{member_dir}-driver"


def _archive_client_context(member_id: int, member_dir: str) -> ArchiveClientContext:
    return ArchiveClientContext(
        control_request_channel=member_specific_port(ARCHIVE_CONTROL_REQUEST_CHANNEL, member_id),
        control_response_channel=member_specific_port(ARCHIVE_CONTROL_RESPONSE_CHANNEL, member_id),
        control_request_stream_id=ARCHIVE_CONTROL_REQUEST_STREAM_ID,
        control_response_stream_id=ARCHIVE_CONTROL_RESPONSE_STREAM_ID_BASE + member_id,
        directory=member_dir,
    )


def _archive_context(member_dir: str, driver_dir: str, archive_client: ArchiveClientContext,
                     clean_start: bool, segment_file_length: Optional[int] = None) -> ArchiveContext:
    return ArchiveContext(
        archive_dir=os.path.join(member_dir, ARCHIVE_DIR),
        driver_directory=driver_dir,
        control_channel=archive_client.control_request_channel,
        control_stream_id=archive_client.control_request_stream_id,
        local_control_channel=LOCAL_CONTROL_CHANNEL,
        local_control_stream_id=archive_client.control_request_stream_id,
        segment_file_length=segment_file_length,
        delete_archive_on_start=clean_start,
    )


def _service_container_context(member_dir: str, driver_dir: str,
                               archive_client: ArchiveClientContext,
                               service: Any) -> ServiceContainerContext:
    return ServiceContainerContext(
        driver_directory=driver_dir,
        cluster_dir=os.path.join(member_dir, SERVICE_DIR),
        archive=archive_client.clone(),
        service=service,
    )


def _assign_member_id(service: Any, member_id: int) -> None:
    if hasattr(service, "member_id"):
        service.member_id = member_id


def static_node_context(topology: ClusterTopology, member_id: int, clean_start: bool,
                        service: Any, base_dir: str, **consensus_options) -> NodeContext:
    """
    Context of a member bootstrapped from the static members string.

    ``consensus_options`` are passed through to ``ConsensusModuleContext``
    (election timeouts, heartbeat interval).
    """
    member_dir, driver_dir = member_dirs(base_dir, member_id)
    archive_client = _archive_client_context(member_id, member_dir)
    _assign_member_id(service, member_id)

    return NodeContext(
        member_id=member_id,
        base_dir=member_dir,
        driver_dir=driver_dir,
        driver=DriverContext(directory=driver_dir),
        archive=_archive_context(member_dir, driver_dir, archive_client, clean_start),
        archive_client=archive_client,
        consensus_module=ConsensusModuleContext(
            cluster_member_id=member_id,
            cluster_members=topology.static_cluster_members,
            appointed_leader_id=topology.appointed_leader_id,
            driver_directory=driver_dir,
            cluster_dir=os.path.join(member_dir, CONSENSUS_MODULE_DIR),
            ingress_channel=INGRESS_CHANNEL,
            log_channel=member_specific_port(LOG_CHANNEL, member_id),
            archive=archive_client.clone(),
            delete_dir_on_start=clean_start,
            **consensus_options,
        ),
        service_container=_service_container_context(member_dir, driver_dir, archive_client, service),
    )


def dynamic_node_context(topology: ClusterTopology, member_id: int, clean_start: bool,
                         service: Any, base_dir: str, **consensus_options) -> NodeContext:
    """
    Context of a member that joins a running cluster.

    The consensus module gets no member id and no static members; instead it
    is told where the static members' status endpoints are and which
    endpoints it owns, and is expected to join through them.
    """
    member_dir, driver_dir = member_dirs(base_dir, member_id)
    archive_client = _archive_client_context(member_id, member_dir)
    _assign_member_id(service, member_id)

    return NodeContext(
        member_id=member_id,
        base_dir=member_dir,
        driver_dir=driver_dir,
        driver=DriverContext(directory=driver_dir),
        archive=_archive_context(
            member_dir, driver_dir, archive_client, clean_start, SEGMENT_FILE_LENGTH
        ),
        archive_client=archive_client,
        consensus_module=ConsensusModuleContext(
            cluster_member_id=None,
            cluster_members="",
            cluster_members_status_endpoints=topology.status_endpoints,
            member_endpoints=topology.cluster_members_endpoints[member_id],
            driver_directory=driver_dir,
            cluster_dir=os.path.join(member_dir, CONSENSUS_MODULE_DIR),
            ingress_channel=INGRESS_CHANNEL,
            log_channel=member_specific_port(LOG_CHANNEL, member_id),
            archive=archive_client.clone(),
            delete_dir_on_start=clean_start,
            **consensus_options,
        ),
        service_container=_service_container_context(member_dir, driver_dir, archive_client, service),
    )


def backup_node_context(topology: ClusterTopology, clean_start: bool, base_dir: str,
                        backup_query_interval: float = 1.0) -> BackupNodeContext:
    """Context of the cluster backup in the reserved slot"""
    slot_index = topology.backup_slot_index
    member_dir, driver_dir = member_dirs(base_dir, slot_index)
    archive_client = _archive_client_context(slot_index, member_dir)

    return BackupNodeContext(
        slot_index=slot_index,
        base_dir=member_dir,
        driver_dir=driver_dir,
        driver=DriverContext(directory=driver_dir),
        archive=_archive_context(
            member_dir, driver_dir, archive_client, clean_start, SEGMENT_FILE_LENGTH
        ),
        archive_client=archive_client,
        cluster_backup=ClusterBackupContext(
            cluster_members_status_endpoints=topology.status_endpoints,
            member_status_channel=(
                f"{MEMBER_STATUS_CHANNEL}|endpoint={backup_status_endpoint(slot_index)}"
            ),
            transfer_endpoint=backup_transfer_endpoint(slot_index),
            driver_directory=driver_dir,
            cluster_dir=os.path.join(member_dir, CLUSTER_BACKUP_DIR),
            archive=archive_client.clone(),
            delete_dir_on_start=clean_start,
            backup_query_interval=backup_query_interval,
        ),
    )


def node_from_backup_context(topology: ClusterTopology, service: Any, base_dir: str,
                             **consensus_options) -> NodeContext:
    """
    Context that restarts the backup slot's state as a running member.

    The member forms a single member static cluster in which it is the
    appointed leader. It reuses the backup's directories without deleting
    anything, and its consensus module runs out of the ``cluster-backup``
    directory the backup wrote its recording log into.
    """
    slot_index = topology.backup_slot_index
    member_dir, driver_dir = member_dirs(base_dir, slot_index)
    archive_client = _archive_client_context(slot_index, member_dir)
    _assign_member_id(service, slot_index)

    return NodeContext(
        member_id=slot_index,
        base_dir=member_dir,
        driver_dir=driver_dir,
        driver=DriverContext(directory=driver_dir),
        archive=_archive_context(member_dir, driver_dir, archive_client, clean_start=False),
        archive_client=archive_client,
        consensus_module=ConsensusModuleContext(
            cluster_member_id=slot_index,
            cluster_members=single_node_cluster_members_string(slot_index),
            appointed_leader_id=slot_index,
            driver_directory=driver_dir,
            cluster_dir=os.path.join(member_dir, CLUSTER_BACKUP_DIR),
            ingress_channel=INGRESS_CHANNEL,
            log_channel=member_specific_port(LOG_CHANNEL, slot_index),
            archive=archive_client.clone(),
            delete_dir_on_start=False,
            **consensus_options,
        ),
        service_container=_service_container_context(member_dir, driver_dir, archive_client, service),
    )


class NodeLifecycleManager:
    """
    Starts and stops the occupants of a harness's slots.

    Args:
        topology: Shape of the cluster
        slots: Slots the started nodes are placed into
        config: Supplies the base dir, runtime, service factory and timings
    """

    def __init__(self, topology: ClusterTopology, slots: NodeSlots, config: HarnessConfig):
        self.topology = topology
        self.slots = slots
        self.config = config
        self.logger = logging.getLogger("raft_harness.lifecycle")

    def _consensus_options(self) -> dict:
        return {
            "election_timeout_range": self.config.election_timeout_range,
            "heartbeat_interval": self.config.heartbeat_interval,
        }

    def _member_slot(self, member_id: int):
        if not 0 <= member_id < self.topology.member_count:
            raise ValueError(
                f"member id {member_id} outside 0..{self.topology.member_count - 1}"
            )
        slot = self.slots[member_id]
        slot.check_vacant()
        return slot

    def start_static_node(self, member_id: int, clean_start: bool = True,
                          service_factory: Optional[Callable[[], Any]] = None) -> ClusterNode:
        slot = self._member_slot(member_id)
        context = static_node_context(
            self.topology, member_id, clean_start, self.config.new_service(service_factory),
            self.config.base_dir, **self._consensus_options(),
        )
        self.logger.info(f"Starting static node {member_id}, clean_start={clean_start}")
        node = ClusterNode(context, self.config.runtime)
        slot.place_node(node)
        return node

    def start_dynamic_node(self, member_id: int, clean_start: bool = True,
                           service_factory: Optional[Callable[[], Any]] = None) -> ClusterNode:
        """
        Start a member that joins the running cluster through its leader.

        The member announces the endpoints of slot ``member_id`` and the leader
        admits it under that id, so dynamic members may start in any order.
        """
        slot = self._member_slot(member_id)
        context = dynamic_node_context(
            self.topology, member_id, clean_start, self.config.new_service(service_factory),
            self.config.base_dir, **self._consensus_options(),
        )
        self.logger.info(f"Starting dynamic node {member_id}, clean_start={clean_start}")
        node = ClusterNode(context, self.config.runtime)
        slot.place_node(node)
        return node

    def start_cluster_backup_node(self, clean_start: bool = True) -> ClusterBackupNode:
        slot = self.slots.backup_slot
        slot.check_vacant()
        context = backup_node_context(self.topology, clean_start, self.config.base_dir)
        self.logger.info(f"Starting backup node in slot {slot.index}, clean_start={clean_start}")
        backup = ClusterBackupNode(context, self.config.runtime)
        slot.place_backup(backup)
        return backup

    def start_static_node_from_backup(
            self, service_factory: Optional[Callable[[], Any]] = None) -> ClusterNode:
        """
        Promote the closed backup to a running single member cluster.

        Raises:
            IllegalStateError: If there is no backup, or it is still open
        """
        slot = self.slots.backup_slot
        slot.check_promotable()
        context = node_from_backup_context(
            self.topology, self.config.new_service(service_factory), self.config.base_dir,
            **self._consensus_options(),
        )
        self.logger.info(f"Starting node {slot.index} from backup state")
        node = ClusterNode(context, self.config.runtime)
        slot.promote_backup(node)
        return node

    def stop_node(self, node: ClusterNode) -> None:
        node.close()

    def stop_backup_node(self) -> None:
        backup = self.slots.backup_slot.backup
        if backup is not None:
            backup.close()

    def stop_all_nodes(self) -> None:
        for node in self.slots.nodes():
            node.close()
        self.stop_backup_node()

    def restart_all_nodes(self, clean_start: bool) -> List[ClusterNode]:
        """
        Start every static member again; their previous nodes must be closed.

        Dynamic members and the backup are left alone.
        """
        return [
            self.start_static_node(member_id, clean_start)
            for member_id in range(self.topology.static_member_count)
        ]
