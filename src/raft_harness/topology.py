"""
Cluster Topology and Node Slots

A topology fixes how many static and dynamic members a test cluster has, which
member (if any) is the appointed leader, and where the single reserved backup
slot sits. ``NodeSlots`` is the owned, indexed collection of those slots; each
slot holds nothing, a member node or the backup node, and moving between those
states goes through explicit transitions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Optional

from .addresses import (
    MAX_MEMBER_SLOTS,
    client_member_endpoints,
    cluster_members_endpoints,
    cluster_members_status_endpoints,
    cluster_members_string,
)
from .errors import ConfigurationError, IllegalStateError


@dataclass(frozen=True)
class ClusterTopology:
    """
    Shape of a test cluster.

    Attributes:
        static_member_count: Members bootstrapped from the static members list
        dynamic_member_count: Members that join a running cluster
        appointed_leader_id: Member forced to lead, or None for an election
    """
    static_member_count: int
    dynamic_member_count: int = 0
    appointed_leader_id: Optional[int] = None

    def __post_init__(self):
        if self.static_member_count < 0 or self.dynamic_member_count < 0:
            raise ConfigurationError(
                f"member counts must not be negative: static={self.static_member_count} "
                f"dynamic={self.dynamic_member_count}"
            )

        if self.static_member_count + self.dynamic_member_count + 1 >= MAX_MEMBER_SLOTS:
            raise ConfigurationError(
                f"too many members static={self.static_member_count} "
                f"dynamic={self.dynamic_member_count}: only support {MAX_MEMBER_SLOTS - 1}"
            )

        if self.appointed_leader_id is not None and not (
            0 <= self.appointed_leader_id < self.static_member_count
        ):
            raise ConfigurationError(
                f"appointed leader {self.appointed_leader_id} is not a static member"
            )

    @property
    def member_count(self) -> int:
        return self.static_member_count + self.dynamic_member_count

    @property
    def backup_slot_index(self) -> int:
        return self.member_count

    @property
    def slot_count(self) -> int:
        return self.member_count + 1

    @property
    def static_cluster_members(self) -> str:
        return cluster_members_string(self.static_member_count)

    @property
    def client_member_endpoints(self) -> str:
        return client_member_endpoints(self.static_member_count)

    @property
    def cluster_members_endpoints(self) -> List[str]:
        return cluster_members_endpoints(self.member_count)

    @property
    def status_endpoints(self) -> str:
        return cluster_members_status_endpoints(self.static_member_count)


class SlotState(Enum):
    EMPTY = "empty"
    NODE = "node"
    BACKUP = "backup"


class Slot:
    """One indexed place in the harness's member array"""

    def __init__(self, index: int):
        self.index = index
        self.state = SlotState.EMPTY
        self.occupant: Any = None

    @property
    def node(self) -> Any:
        return self.occupant if self.state == SlotState.NODE else None

    @property
    def backup(self) -> Any:
        return self.occupant if self.state == SlotState.BACKUP else None

    def check_vacant(self) -> None:
        """Raise if the occupant is still open"""
        if self.occupant is not None and not self.occupant.is_closed():
            raise IllegalStateError(
                f"slot {self.index} is still occupied by an open {self.state.value}"
            )

    def place_node(self, node: Any) -> None:
        self.check_vacant()
        self.state = SlotState.NODE
        self.occupant = node

    def place_backup(self, backup: Any) -> None:
        self.check_vacant()
        self.state = SlotState.BACKUP
        self.occupant = backup

    def check_promotable(self) -> None:
        """Raise unless the slot holds a backup that has been closed"""
        if self.state != SlotState.BACKUP:
            raise IllegalStateError("no backup node present to start from")
        if not self.occupant.is_closed():
            raise IllegalStateError("backup node must be closed before starting from backup")

    def promote_backup(self, node: Any) -> None:
        self.check_promotable()
        self.state = SlotState.NODE
        self.occupant = node

    def clear(self) -> None:
        self.state = SlotState.EMPTY
        self.occupant = None

    def __repr__(self) -> str:
        return f"Slot({self.index}, {self.state.value})"


class NodeSlots:
    """Member slots ``0..member_count-1`` followed by the backup slot"""

    def __init__(self, topology: ClusterTopology):
        self.topology = topology
        self._slots = [Slot(i) for i in range(topology.slot_count)]

    def __getitem__(self, index: int) -> Slot:
        if not 0 <= index < len(self._slots):
            raise IndexError(f"slot index {index} outside 0..{len(self._slots) - 1}")
        return self._slots[index]

    def __iter__(self) -> Iterator[Slot]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def backup_slot(self) -> Slot:
        return self._slots[self.topology.backup_slot_index]

    def nodes(self) -> List[Any]:
        """Occupying member nodes in ascending slot order, closed ones included"""
        return [slot.node for slot in self._slots if slot.node is not None]
