"""
In-process Cluster Runtime

Simulated implementations of the processes a cluster member runs (transport
driver, archive, consensus module, service container, cluster backup) and of
the cluster client, all living in the test process and talking through a
shared endpoint registry. ``LocalRuntime`` is the factory the harness uses to
launch them; any object with the same launch methods can replace it.
"""

import threading
from typing import Dict

from ..config import (
    ArchiveContext,
    ClusterBackupContext,
    ClusterClientContext,
    ConsensusModuleContext,
    DriverContext,
    ServiceContainerContext,
)
from ..errors import IllegalStateError
from .archive import Archive, find_archive
from .backup import ClusterBackup
from .client import LocalClusterClient
from .consensus import ConsensusModule
from .service import ClusteredService, ClusteredServiceContainer, TestService
from .snapshots import RecordingLog, Snapshot
from .transport import EndpointRegistry, MediaDriver


class LocalRuntime:
    """Launches simulated member processes sharing one endpoint registry"""

    default_service_factory = TestService

    def __init__(self):
        self.registry = EndpointRegistry()
        self._drivers: Dict[str, MediaDriver] = {}
        self._lock = threading.Lock()

    def launch_driver(self, context: DriverContext) -> MediaDriver:
        with self._lock:
            if context.directory in self._drivers:
                raise IllegalStateError(f"driver already active in {context.directory}")
            driver = MediaDriver(context, self.registry, on_close=self._driver_closed)
            self._drivers[context.directory] = driver
        try:
            return driver.start()
        except Exception:
            self._driver_closed(driver)
            raise

    def _driver_closed(self, driver: MediaDriver) -> None:
        with self._lock:
            if self._drivers.get(driver.directory) is driver:
                del self._drivers[driver.directory]

    def driver_for(self, directory: str) -> MediaDriver:
        with self._lock:
            driver = self._drivers.get(directory)
        if driver is None:
            raise IllegalStateError(f"no driver running in {directory}")
        return driver

    def _archive_for(self, driver: MediaDriver, control_request_channel: str) -> Archive:
        archive = find_archive(driver, control_request_channel)
        if archive is None:
            raise IllegalStateError(f"no archive listening on {control_request_channel}")
        return archive

    def launch_archive(self, context: ArchiveContext) -> Archive:
        return Archive(context, self.driver_for(context.driver_directory)).start()

    def launch_consensus_module(self, context: ConsensusModuleContext) -> ConsensusModule:
        driver = self.driver_for(context.driver_directory)
        archive = self._archive_for(driver, context.archive.control_request_channel)
        return ConsensusModule(context, driver, archive).start()

    def launch_service_container(self, context: ServiceContainerContext) -> ClusteredServiceContainer:
        return ClusteredServiceContainer(context, self.driver_for(context.driver_directory)).start()

    def launch_cluster_backup(self, context: ClusterBackupContext) -> ClusterBackup:
        driver = self.driver_for(context.driver_directory)
        archive = self._archive_for(driver, context.archive.control_request_channel)
        return ClusterBackup(context, driver, archive).start()

    def connect_client(self, context: ClusterClientContext) -> LocalClusterClient:
        return LocalClusterClient(context, self.driver_for(context.driver_directory)).connect()

    def recording_log(self, cluster_dir: str) -> RecordingLog:
        return RecordingLog(cluster_dir)


__all__ = [
    "LocalRuntime",
    "EndpointRegistry",
    "MediaDriver",
    "Archive",
    "ConsensusModule",
    "ClusteredService",
    "ClusteredServiceContainer",
    "TestService",
    "ClusterBackup",
    "LocalClusterClient",
    "RecordingLog",
    "Snapshot",
]
