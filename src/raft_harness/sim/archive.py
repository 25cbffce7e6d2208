"""
Log Archive

Records committed log entries of one member as JSON lines under the archive
directory so a member restarted without a clean start, or a node promoted from
a backup, can replay them.
"""

import json
import logging
import os
import shutil
import threading
from typing import List, Optional

from ..config import ArchiveContext
from ..messages import LogEntry
from .transport import MediaDriver


class Archive:
    RECORDING_FILE = "recording.jsonl"

    def __init__(self, context: ArchiveContext, driver: MediaDriver):
        self.context = context
        self.driver = driver
        self.archive_dir = context.archive_dir
        self.recording_path = os.path.join(self.archive_dir, self.RECORDING_FILE)
        self._entries: List[LogEntry] = []
        self._lock = threading.Lock()
        self._closed = False
        self.logger = logging.getLogger("raft_harness.sim.archive")

    def start(self) -> "Archive":
        if self.context.delete_archive_on_start and os.path.isdir(self.archive_dir):
            shutil.rmtree(self.archive_dir)
        os.makedirs(self.archive_dir, exist_ok=True)

        if os.path.exists(self.recording_path):
            with open(self.recording_path, "r", encoding="utf-8") as stream:
                for line in stream:
                    line = line.strip()
                    if line:
                        self._entries.append(LogEntry.from_dict(json.loads(line)))

        self.driver.bind(self.context.control_channel, self)
        self.logger.info(
            f"Archive started in {self.archive_dir} with {len(self._entries)} recorded entries"
        )
        return self

    def record(self, entry: LogEntry) -> None:
        """Append ``entry`` if it extends the recording, ignore it otherwise"""
        with self._lock:
            if self._closed or entry.index < len(self._entries):
                return
            if entry.index != len(self._entries):
                raise ValueError(
                    f"recording gap: expected index {len(self._entries)}, got {entry.index}"
                )
            self._entries.append(entry)
            with open(self.recording_path, "a", encoding="utf-8") as stream:
                stream.write(json.dumps(entry.to_dict()) + "\n")

    def entries(self, from_index: int = 0) -> List[LogEntry]:
        with self._lock:
            return list(self._entries[from_index:])

    def last_position(self) -> int:
        with self._lock:
            return self._entries[-1].position if self._entries else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def close(self) -> None:
        if self._closed:
            return
        with self._lock:
            self._closed = True
        self.driver.unbind(self.context.control_channel, self)
        self.logger.debug(f"Archive in {self.archive_dir} closed")


def find_archive(driver: MediaDriver, control_request_channel: str) -> Optional[Archive]:
    archive = driver.resolve(control_request_channel)
    return archive if isinstance(archive, Archive) else None
