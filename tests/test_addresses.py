"""
Address Allocation Tests

Endpoint and descriptor strings are consumed by external components verbatim,
so these tests pin exact formats.
"""

import unittest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from raft_harness.addresses import (
    ARCHIVE_CONTROL_REQUEST_CHANNEL,
    LOG_CHANNEL,
    EndpointFamily,
    backup_status_endpoint,
    backup_transfer_endpoint,
    client_member_endpoints,
    cluster_members_endpoints,
    cluster_members_status_endpoints,
    cluster_members_string,
    member_endpoint,
    member_endpoints,
    member_id_of,
    member_specific_port,
    parse_client_member_endpoints,
    parse_cluster_members,
    single_node_cluster_members_string,
)


class TestMemberEndpoints(unittest.TestCase):

    def test_endpoint_families(self):
        self.assertEqual(member_endpoint(EndpointFamily.INGRESS, 2), "localhost:20112")
        self.assertEqual(member_endpoint(EndpointFamily.MEMBER_STATUS, 2), "localhost:20222")
        self.assertEqual(member_endpoint(EndpointFamily.LOG, 2), "localhost:20332")
        self.assertEqual(member_endpoint(EndpointFamily.TRANSFER, 2), "localhost:20442")
        self.assertEqual(member_endpoint(EndpointFamily.ARCHIVE_CONTROL, 2), "localhost:8012")

    def test_member_record(self):
        endpoints = member_endpoints(1)
        self.assertEqual(
            endpoints.to_record(),
            "localhost:20111,localhost:20221,localhost:20331,localhost:20441,localhost:8011",
        )
        self.assertEqual(endpoints.to_member_record(), "1," + endpoints.to_record())

    def test_member_specific_port_replaces_last_character(self):
        self.assertEqual(
            member_specific_port(ARCHIVE_CONTROL_REQUEST_CHANNEL, 3),
            "raft:udp?term-length=64k|endpoint=localhost:8013",
        )
        self.assertTrue(member_specific_port(LOG_CHANNEL, 4).endswith("localhost:20554"))

    def test_invalid_member_ids(self):
        """Ids outside the single digit suffix range are rejected"""
        for bad_id in (-1, 10, 42):
            with self.assertRaises(ValueError):
                member_endpoint(EndpointFamily.INGRESS, bad_id)
            with self.assertRaises(ValueError):
                member_specific_port(LOG_CHANNEL, bad_id)

    def test_endpoints_distinct_per_member(self):
        """Members 0..8 never share an endpoint, in any family"""
        endpoint_sets = [
            tuple(member_endpoints(member_id).to_record().split(","))
            for member_id in range(9)
        ]
        self.assertEqual(len(set(endpoint_sets)), 9)

        for family_index in range(5):
            family_endpoints = [endpoints[family_index] for endpoints in endpoint_sets]
            self.assertEqual(len(set(family_endpoints)), 9)

    def test_member_id_of_endpoint(self):
        for member_id in range(9):
            status = member_endpoints(member_id).member_status
            self.assertEqual(member_id_of(EndpointFamily.MEMBER_STATUS, status), member_id)

        for bad_endpoint in ("localhost:20111", "localhost:2022", "localhost:20221x"):
            with self.assertRaises(ValueError):
                member_id_of(EndpointFamily.MEMBER_STATUS, bad_endpoint)

    def test_backup_endpoints(self):
        self.assertEqual(backup_status_endpoint(3), "localhost:20223")
        self.assertEqual(backup_transfer_endpoint(3), "localhost:20443")


class TestClusterDescriptors(unittest.TestCase):

    def test_cluster_members_string(self):
        members = cluster_members_string(3)
        records = members.split("|")

        self.assertEqual(len(records), 3)
        self.assertEqual(
            records[0],
            "0,localhost:20110,localhost:20220,localhost:20330,localhost:20440,localhost:8010",
        )
        self.assertTrue(records[2].startswith("2,localhost:20112,"))

    def test_single_node_cluster_members_string(self):
        self.assertEqual(single_node_cluster_members_string(3), cluster_members_string(4).split("|")[3])

    def test_client_member_endpoints(self):
        self.assertEqual(
            client_member_endpoints(3),
            "0=localhost:20110,1=localhost:20111,2=localhost:20112",
        )

    def test_cluster_members_endpoints(self):
        endpoints = cluster_members_endpoints(2)
        self.assertEqual(len(endpoints), 2)
        self.assertEqual(endpoints[1], member_endpoints(1).to_record())

    def test_status_endpoints(self):
        self.assertEqual(
            cluster_members_status_endpoints(3),
            "localhost:20220,localhost:20221,localhost:20222",
        )

    def test_empty_descriptors(self):
        self.assertEqual(cluster_members_string(0), "")
        self.assertEqual(client_member_endpoints(0), "")


class TestDescriptorParsing(unittest.TestCase):

    def test_parse_cluster_members(self):
        members = parse_cluster_members(cluster_members_string(3))

        self.assertEqual([m.member_id for m in members], [0, 1, 2])
        self.assertEqual(members[1], member_endpoints(1))

    def test_parse_empty_cluster_members(self):
        self.assertEqual(parse_cluster_members(""), [])

    def test_parse_cluster_members_rejects_duplicates(self):
        record = single_node_cluster_members_string(1)
        with self.assertRaises(ValueError):
            parse_cluster_members(f"{record}|{record}")

    def test_parse_cluster_members_rejects_malformed(self):
        with self.assertRaises(ValueError):
            parse_cluster_members("0,localhost:20110,localhost:20220")
        with self.assertRaises(ValueError):
            parse_cluster_members("x,a,b,c,d,e")

    def test_parse_client_member_endpoints(self):
        endpoints = parse_client_member_endpoints(client_member_endpoints(3))

        self.assertEqual(list(endpoints), [0, 1, 2])
        self.assertEqual(endpoints[2], "localhost:20112")

    def test_parse_client_member_endpoints_rejects_duplicates(self):
        with self.assertRaises(ValueError):
            parse_client_member_endpoints("0=localhost:20110,0=localhost:20111")
        with self.assertRaises(ValueError):
            parse_client_member_endpoints("0localhost:20110")


if __name__ == "__main__":
    unittest.main()
