"""
Simulated Cluster Backup

A non-voting participant that finds the leader through the static members'
status endpoints, copies its latest snapshot and then keeps copying the
committed log into its own archive. Everything it copies lands in the same
formats a consensus module recovers from, which is what lets a closed backup
be restarted as a single member cluster.
"""

import logging
import os
import shutil
import threading
import time
from typing import Optional

from ..config import ClusterBackupContext
from ..counters import BACKUP_STATE_TYPE_ID, LIVE_LOG_POSITION_TYPE_ID
from ..messages import BackupState
from .archive import Archive
from .snapshots import RecordingLog
from .transport import MediaDriver


class ClusterBackup:

    def __init__(self, context: ClusterBackupContext, driver: MediaDriver, archive: Archive):
        self.context = context
        self.driver = driver
        self.archive = archive
        self.status_endpoints = [e for e in context.cluster_members_status_endpoints.split(",") if e]
        self.recording_log: Optional[RecordingLog] = None
        self.leader = None
        self.leader_id: Optional[int] = None
        self._state = BackupState.INIT
        self._last_query = 0.0
        self.running = False
        self._closed = False
        self.thread: Optional[threading.Thread] = None
        self.logger = logging.getLogger("raft_harness.sim.backup")

    def start(self) -> "ClusterBackup":
        cluster_dir = self.context.cluster_dir
        if self.context.delete_dir_on_start and os.path.isdir(cluster_dir):
            shutil.rmtree(cluster_dir)
        os.makedirs(cluster_dir, exist_ok=True)
        self.recording_log = RecordingLog(cluster_dir)

        counters = self.driver.counters
        self.state_counter = counters.allocate(BACKUP_STATE_TYPE_ID, "Backup state", BackupState.INIT.value)
        self.live_log_position_counter = counters.allocate(
            LIVE_LOG_POSITION_TYPE_ID, "Backup live log position", self.archive.last_position()
        )
        self.driver.bind(self.context.transfer_endpoint, self)

        self.running = True
        self.thread = threading.Thread(target=self._run, name="cluster-backup", daemon=True)
        self.thread.start()
        self.logger.info(f"Cluster backup started, sources={self.status_endpoints}")
        return self

    def _run(self) -> None:
        while self.running:
            try:
                self._do_work()
                time.sleep(self.context.source_poll_interval)
            except Exception as e:
                self.logger.error(f"Error in backup loop: {e}")
                self._set_state(BackupState.RESET_BACKUP)
                time.sleep(0.1)

    def _do_work(self) -> None:
        state = self._state
        if state in (BackupState.INIT, BackupState.RESET_BACKUP):
            self.leader = None
            self._set_state(BackupState.BACKUP_QUERY)
        elif state == BackupState.BACKUP_QUERY:
            self._query_leader()
        elif state == BackupState.SNAPSHOT_RETRIEVE:
            self._set_state(BackupState.LIVE_LOG_REPLAY)
        elif state == BackupState.LIVE_LOG_REPLAY:
            if self._copy_log():
                self._set_state(BackupState.UPDATE_RECORDING_LOG)
        elif state == BackupState.UPDATE_RECORDING_LOG:
            self._set_state(BackupState.BACKING_UP)
        elif state == BackupState.BACKING_UP:
            if not self._copy_log():
                self.logger.info("Lost backup source, querying again")
                self._set_state(BackupState.RESET_BACKUP)
            elif time.time() - self._last_query > self.context.backup_query_interval:
                self._refresh_snapshot()

    def _query_leader(self) -> None:
        for endpoint in self.status_endpoints:
            peer = self.driver.resolve(endpoint)
            if peer is None:
                continue
            try:
                response = peer.handle_backup_query()
            except Exception as e:
                self.logger.debug(f"Backup query to {endpoint} failed: {e}")
                continue

            if response is not None:
                self.leader = peer
                self.leader_id = response.leader_id
                self._last_query = time.time()
                self.logger.info(f"Backing up from leader {response.leader_id}")
                if self._store_snapshot(response.snapshot):
                    self._set_state(BackupState.SNAPSHOT_RETRIEVE)
                else:
                    self._set_state(BackupState.LIVE_LOG_REPLAY)
                return

    def _store_snapshot(self, snapshot) -> bool:
        """Record ``snapshot`` if newer than ours; True if it was recorded"""
        if snapshot is None:
            return False
        latest = self.recording_log.latest_snapshot()
        if latest is not None and latest.index >= snapshot.index:
            return False
        self.recording_log.append_snapshot(
            snapshot.index, snapshot.term, snapshot.position, snapshot.state,
            {"source_member_id": self.leader_id},
        )
        return True

    def _refresh_snapshot(self) -> None:
        self._last_query = time.time()
        try:
            response = self.leader.handle_backup_query()
        except Exception as e:
            self.logger.debug(f"Backup snapshot refresh failed: {e}")
            return
        if response is not None:
            self._store_snapshot(response.snapshot)

    def _copy_log(self) -> bool:
        """Copy newly committed entries; False when the leader is gone"""
        if self.leader is None or self.leader.is_closed():
            return False
        try:
            entries = self.leader.handle_log_fetch(len(self.archive))
        except TimeoutError:
            return True
        if entries is None:
            return False

        for entry in entries:
            self.archive.record(entry)
        self.live_log_position_counter.set(self.archive.last_position())
        return True

    def _set_state(self, state: BackupState) -> None:
        if state != self._state:
            self.logger.debug(f"Backup state {self._state.name} -> {state.name}")
        self._state = state
        self.state_counter.set(state.value)

    def state(self) -> BackupState:
        return self._state

    def live_log_position(self) -> int:
        return self.live_log_position_counter.get()

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.running = False
        if self.thread is not None and self.thread.is_alive():
            self.thread.join(timeout=1.0)
        self._state = BackupState.CLOSED
        self.state_counter.set(BackupState.CLOSED.value)
        self.driver.unbind(self.context.transfer_endpoint, self)
        self.state_counter.close()
        self.live_log_position_counter.close()
        self.logger.info("Cluster backup closed")
