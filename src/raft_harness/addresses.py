"""
Member Address Allocation

Deterministic endpoint generation for cluster members. Every endpoint is a
fixed ``host:portBase`` literal per channel family with the member id appended
as a decimal suffix, e.g. member 2 has ingress endpoint ``localhost:20112``.

The suffix scheme only stays collision free while ids are single digit, which
is why a topology can hold at most nine members plus the backup slot
(see ``MAX_MEMBER_SLOTS``). Do not widen one without the other.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

MAX_MEMBER_SLOTS = 10

LOG_CHANNEL = "raft:udp?term-length=256k|control-mode=manual|control=localhost:20550"
ARCHIVE_CONTROL_REQUEST_CHANNEL = "raft:udp?term-length=64k|endpoint=localhost:8010"
ARCHIVE_CONTROL_RESPONSE_CHANNEL = "raft:udp?term-length=64k|endpoint=localhost:8020"
INGRESS_CHANNEL = "raft:udp?term-length=64k"
CLIENT_INGRESS_CHANNEL = "raft:udp"
LOCAL_CONTROL_CHANNEL = "raft:ipc?term-length=64k"

ARCHIVE_CONTROL_REQUEST_STREAM_ID = 100
ARCHIVE_CONTROL_RESPONSE_STREAM_ID_BASE = 110


class EndpointFamily(Enum):
    """Channel families and the host/port-base literal each one uses"""
    INGRESS = "localhost:2011"
    MEMBER_STATUS = "localhost:2022"
    LOG = "localhost:2033"
    TRANSFER = "localhost:2044"
    ARCHIVE_CONTROL = "localhost:801"


@dataclass(frozen=True)
class MemberEndpoints:
    """The five endpoints owned by one member id"""
    member_id: int
    ingress: str
    member_status: str
    log: str
    transfer: str
    archive_control: str

    def to_record(self) -> str:
        """Endpoints as used by a dynamic member to announce itself"""
        return ",".join(
            [self.ingress, self.member_status, self.log, self.transfer, self.archive_control]
        )

    def to_member_record(self) -> str:
        """Endpoints prefixed with the member id, as in a static members string"""
        return f"{self.member_id},{self.to_record()}"


def _check_member_id(member_id: int) -> None:
    if member_id < 0:
        raise ValueError(f"member id must not be negative: {member_id}")
    if member_id >= MAX_MEMBER_SLOTS:
        raise ValueError(
            f"member id {member_id} does not fit the single digit port suffix scheme"
        )


def _check_member_count(member_count: int) -> None:
    if member_count < 0 or member_count > MAX_MEMBER_SLOTS:
        raise ValueError(f"invalid member count: {member_count}")


def member_endpoint(family: EndpointFamily, member_id: int) -> str:
    """Endpoint of ``family`` for ``member_id``"""
    _check_member_id(member_id)
    return f"{family.value}{member_id}"


def member_specific_port(channel: str, member_id: int) -> str:
    """Replace the last digit of a channel's port with the member id"""
    _check_member_id(member_id)
    return channel[:-1] + str(member_id)


def member_endpoints(member_id: int) -> MemberEndpoints:
    return MemberEndpoints(
        member_id=member_id,
        ingress=member_endpoint(EndpointFamily.INGRESS, member_id),
        member_status=member_endpoint(EndpointFamily.MEMBER_STATUS, member_id),
        log=member_endpoint(EndpointFamily.LOG, member_id),
        transfer=member_endpoint(EndpointFamily.TRANSFER, member_id),
        archive_control=member_endpoint(EndpointFamily.ARCHIVE_CONTROL, member_id),
    )


def cluster_members_string(member_count: int) -> str:
    """
    Static members descriptor for ``member_count`` members.

    One ``|`` separated record per member, each record being
    ``id,ingress,memberStatus,log,transfer,archiveControl``.
    """
    _check_member_count(member_count)
    return "|".join(member_endpoints(i).to_member_record() for i in range(member_count))


def single_node_cluster_members_string(member_id: int) -> str:
    return member_endpoints(member_id).to_member_record()


def client_member_endpoints(member_count: int) -> str:
    """Ingress endpoints as ``id=endpoint`` pairs, used by cluster clients"""
    _check_member_count(member_count)
    return ",".join(
        f"{i}={member_endpoint(EndpointFamily.INGRESS, i)}" for i in range(member_count)
    )


def cluster_members_endpoints(member_count: int) -> List[str]:
    _check_member_count(member_count)
    return [member_endpoints(i).to_record() for i in range(member_count)]


def cluster_members_status_endpoints(member_count: int) -> str:
    _check_member_count(member_count)
    return ",".join(
        member_endpoint(EndpointFamily.MEMBER_STATUS, i) for i in range(member_count)
    )


def backup_status_endpoint(slot_index: int) -> str:
    return member_endpoint(EndpointFamily.MEMBER_STATUS, slot_index)


def backup_transfer_endpoint(slot_index: int) -> str:
    return member_endpoint(EndpointFamily.TRANSFER, slot_index)


def parse_member_record(member_id: int, record: str) -> MemberEndpoints:
    """Parse an ``ingress,status,log,transfer,archive`` record"""
    parts = record.split(",")
    if len(parts) != 5 or not all(parts):
        raise ValueError(f"invalid member endpoints record: {record!r}")
    return MemberEndpoints(member_id, *parts)


def member_id_of(family: EndpointFamily, endpoint: str) -> int:
    """
    Member id encoded as the suffix of an endpoint of ``family``.

    Raises:
        ValueError: If ``endpoint`` is not one of that family's endpoints
    """
    prefix, suffix = endpoint[:len(family.value)], endpoint[len(family.value):]
    if prefix != family.value or len(suffix) != 1 or not suffix.isdigit():
        raise ValueError(f"not a {family.name} endpoint: {endpoint!r}")
    return int(suffix)


def parse_cluster_members(text: str) -> List[MemberEndpoints]:
    """
    Parse a static members descriptor back into member records.

    Args:
        text: Descriptor as produced by ``cluster_members_string``

    Returns:
        list: Member records in descriptor order, empty for an empty string

    Raises:
        ValueError: On a malformed record or a duplicate member id
    """
    members: List[MemberEndpoints] = []
    if not text:
        return members

    seen = set()
    for record in text.split("|"):
        member_id_text, _, endpoints = record.partition(",")
        try:
            member_id = int(member_id_text)
        except ValueError:
            raise ValueError(f"invalid member id in record: {record!r}") from None

        if member_id in seen:
            raise ValueError(f"duplicate member id {member_id} in cluster members")
        seen.add(member_id)
        members.append(parse_member_record(member_id, endpoints))

    return members


def parse_client_member_endpoints(text: str) -> Dict[int, str]:
    """Parse ``id=endpoint`` pairs into an ordered id -> ingress endpoint map"""
    endpoints: Dict[int, str] = {}
    if not text:
        return endpoints

    for pair in text.split(","):
        member_id_text, sep, endpoint = pair.partition("=")
        if not sep or not endpoint:
            raise ValueError(f"invalid member endpoint: {pair!r}")
        member_id = int(member_id_text)
        if member_id in endpoints:
            raise ValueError(f"duplicate member id {member_id} in member endpoints")
        endpoints[member_id] = endpoint

    return endpoints
