"""
Process Contexts and Harness Configuration

Each process group of a cluster member (transport driver, archive, consensus
module, service container, or cluster backup) is started from its own context.
The contexts are plain dataclasses; ``NodeContext`` and ``BackupNodeContext``
bundle the ones a member needs. ``HarnessConfig`` holds the knobs of the
harness itself and the runtime that materialises the contexts.
"""

import dataclasses
import getpass
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

BASE_DIR_ENV = "RAFT_HARNESS_DIR"
MAX_CATALOG_ENTRIES = 128
SEGMENT_FILE_LENGTH = 16 * 1024 * 1024


def default_base_dir() -> str:
    """
    Directory prefix for all member directories.

    Taken from ``RAFT_HARNESS_DIR`` when set, otherwise a per-user directory in
    the system temp dir. Members live in ``<base>-<id>`` siblings of it.
    """
    configured = os.environ.get(BASE_DIR_ENV)
    if configured:
        return configured
    return os.path.join(tempfile.gettempdir(), f"raft-harness-{getpass.getuser()}")


@dataclass
class DriverContext:
    directory: str
    dir_delete_on_start: bool = True
    dir_delete_on_shutdown: bool = True
    threading_mode: str = "shared"
    term_buffer_sparse_file: bool = True


@dataclass
class ArchiveClientContext:
    """How a process reaches its member's archive"""
    control_request_channel: str
    control_response_channel: str
    control_request_stream_id: int
    control_response_stream_id: int
    directory: str

    def clone(self) -> "ArchiveClientContext":
        return dataclasses.replace(self)


@dataclass
class ArchiveContext:
    archive_dir: str
    driver_directory: str
    control_channel: str
    control_stream_id: int
    local_control_channel: str
    local_control_stream_id: int
    max_catalog_entries: int = MAX_CATALOG_ENTRIES
    segment_file_length: Optional[int] = None
    recording_events_enabled: bool = False
    threading_mode: str = "shared"
    delete_archive_on_start: bool = False


@dataclass
class ConsensusModuleContext:
    """
    Consensus module configuration.

    A static member has ``cluster_member_id`` set and the full static members
    string in ``cluster_members``. A dynamic member has no id, an empty members
    string, and instead names the status endpoints to join through plus its own
    ``member_endpoints`` record.
    """
    cluster_member_id: Optional[int]
    cluster_members: str
    driver_directory: str
    cluster_dir: str
    ingress_channel: str
    log_channel: str
    archive: ArchiveClientContext
    appointed_leader_id: Optional[int] = None
    cluster_members_status_endpoints: str = ""
    member_endpoints: str = ""
    delete_dir_on_start: bool = False
    election_timeout_range: Tuple[float, float] = (0.15, 0.30)
    heartbeat_interval: float = 0.05


@dataclass
class ServiceContainerContext:
    driver_directory: str
    cluster_dir: str
    archive: ArchiveClientContext
    service: Any


@dataclass
class ClusterBackupContext:
    cluster_members_status_endpoints: str
    member_status_channel: str
    transfer_endpoint: str
    driver_directory: str
    cluster_dir: str
    archive: ArchiveClientContext
    delete_dir_on_start: bool = False
    backup_query_interval: float = 1.0
    source_poll_interval: float = 0.01


@dataclass
class ClusterClientContext:
    """
    Client session settings. ``egress_listener`` receives ``on_message`` and
    ``on_new_leader`` callbacks from ``poll_egress``.
    """
    egress_listener: Any
    driver_directory: str
    ingress_channel: str
    cluster_member_endpoints: str
    message_timeout: float = 5.0


@dataclass
class NodeContext:
    """Everything needed to start one cluster member"""
    member_id: int
    base_dir: str
    driver_dir: str
    driver: DriverContext
    archive: ArchiveContext
    archive_client: ArchiveClientContext
    consensus_module: ConsensusModuleContext
    service_container: ServiceContainerContext

    @property
    def service(self) -> Any:
        return self.service_container.service


@dataclass
class BackupNodeContext:
    """Everything needed to start the cluster backup in its reserved slot"""
    slot_index: int
    base_dir: str
    driver_dir: str
    driver: DriverContext
    archive: ArchiveContext
    archive_client: ArchiveClientContext
    cluster_backup: ClusterBackupContext


def _default_runtime() -> Any:
    from .sim import LocalRuntime
    return LocalRuntime()


@dataclass
class HarnessConfig:
    """
    Settings for a ``ClusterHarness``.

    Attributes:
        base_dir: Prefix of every member directory
        runtime: Factory that launches member processes and clients
        service_factory: Builds the clustered service for a member, called
            with no arguments; defaults to the runtime's test service. The
            service must provide ``message_count``, ``was_snapshot_loaded``
            and ``was_snapshot_taken``
        keep_alive_interval: Idle seconds before awaits send a keepalive
        leader_poll_interval: Seconds between ``await_leader`` scans
        backup_poll_interval: Seconds between backup state polls
        election_timeout_range: Passed to every consensus module
        heartbeat_interval: Passed to every consensus module
    """
    base_dir: str = field(default_factory=default_base_dir)
    runtime: Any = field(default_factory=_default_runtime)
    service_factory: Optional[Callable[[], Any]] = None
    keep_alive_interval: float = 1.0
    leader_poll_interval: float = 1.0
    backup_poll_interval: float = 0.1
    election_timeout_range: Tuple[float, float] = (0.15, 0.30)
    heartbeat_interval: float = 0.05

    def new_service(self, service_factory: Optional[Callable[[], Any]] = None) -> Any:
        factory = service_factory or self.service_factory or self.runtime.default_service_factory
        return factory()
