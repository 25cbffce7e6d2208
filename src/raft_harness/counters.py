"""
Published Counters

Counters are the status surface a node publishes for observers: the control
toggle register, the snapshot counter, commit position, election state and
so on. Each counter is a thread-safe integer cell identified by a type id, so
an observer can find a counter without holding a reference to the component
that allocated it.
"""

import threading
from typing import Dict, Iterator, List, Optional

CONTROL_TOGGLE_TYPE_ID = 200
CLUSTER_NODE_ROLE_TYPE_ID = 201
COMMIT_POSITION_TYPE_ID = 203
ELECTION_STATE_TYPE_ID = 207
SNAPSHOT_COUNTER_TYPE_ID = 205
BACKUP_STATE_TYPE_ID = 208
LIVE_LOG_POSITION_TYPE_ID = 209
SERVICE_MESSAGE_COUNT_TYPE_ID = 210


class AtomicCounter:
    """Integer cell with compare-and-set, shared between threads"""

    def __init__(self, counter_id: int, type_id: int, label: str, initial: int = 0):
        self.counter_id = counter_id
        self.type_id = type_id
        self.label = label
        self._value = initial
        self._closed = False
        self._lock = threading.Lock()

    def get(self) -> int:
        with self._lock:
            return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value

    def increment(self) -> int:
        """Add one and return the previous value"""
        with self._lock:
            previous = self._value
            self._value += 1
            return previous

    def compare_and_set(self, expected: int, update: int) -> bool:
        with self._lock:
            if self._value != expected:
                return False
            self._value = update
            return True

    def close(self) -> None:
        self._closed = True

    def is_closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"AtomicCounter(id={self.counter_id}, type={self.type_id}, label={self.label!r}, value={self.get()})"


class CountersManager:
    """
    Allocates counters and lets readers look them up by type id.

    A closed counter stays allocated but is skipped by lookups, which mirrors
    a component releasing its counters on shutdown while observers still hold
    the manager.
    """

    def __init__(self):
        self._counters: Dict[int, AtomicCounter] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    def allocate(self, type_id: int, label: str, initial: int = 0) -> AtomicCounter:
        with self._lock:
            counter = AtomicCounter(self._next_id, type_id, label, initial)
            self._counters[counter.counter_id] = counter
            self._next_id += 1
            return counter

    def find_by_type_id(self, type_id: int) -> Optional[AtomicCounter]:
        """First open counter with ``type_id``, or None"""
        with self._lock:
            for counter in self._counters.values():
                if counter.type_id == type_id and not counter.is_closed():
                    return counter
        return None

    def counters_of_type(self, type_id: int) -> List[AtomicCounter]:
        with self._lock:
            return [c for c in self._counters.values() if c.type_id == type_id and not c.is_closed()]

    def close_all(self) -> None:
        with self._lock:
            for counter in self._counters.values():
                counter.close()

    def __iter__(self) -> Iterator[AtomicCounter]:
        with self._lock:
            snapshot = list(self._counters.values())
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)
