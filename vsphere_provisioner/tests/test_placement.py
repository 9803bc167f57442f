import unittest

from vsphere_provisioner.endpoint.base import EntityKind
from vsphere_provisioner.engine import ProvisioningEngine
from vsphere_provisioner.errors import InsufficientCapacity, ResolutionError, ValidationError
from vsphere_provisioner.models.network import NetworkState, NetworkType
from vsphere_provisioner.models.placement import PlacementRequest
from vsphere_provisioner.tests.fakes import FakeEndpoint, build_region, make_settings, no_sleep


class HostSelectionTests(unittest.TestCase):
    def setUp(self):
        self.endpoint, self.dc, self.cluster = build_region()
        self.engine = ProvisioningEngine(self.endpoint, make_settings(), sleep=no_sleep)
        self.placement = self.engine.placement

    def tearDown(self):
        self.engine.close()

    def host_lookups(self):
        return [c for c in self.endpoint.calls if c[0] == "find_entities" and c[2] == EntityKind.HOST]

    def test_green_host(self):
        self.assertEqual(self.placement.select_host("cluster-1").name, "esx-01")

    def test_green_wins_over_earlier_yellow(self):
        self.endpoint.add_cluster(self.dc, "cluster-2", hosts=[("esx-y", "yellow"), ("esx-g", "green")])
        self.assertEqual(self.placement.select_host("cluster-2").name, "esx-g")

    def test_first_yellow_when_nothing_is_green(self):
        self.endpoint.add_cluster(self.dc, "cluster-2",
                                  hosts=[("esx-r", "red"), ("esx-y1", "yellow"), ("esx-y2", "yellow")])

        with self.assertLogs("vsphere_provisioner.placement", level="WARNING"):
            host = self.placement.select_host("cluster-2")

        self.assertEqual(host.name, "esx-y1")

    def test_only_red_or_gray_hosts(self):
        self.endpoint.add_cluster(self.dc, "cluster-2", hosts=[("esx-r", "red"), ("esx-x", "gray")])
        with self.assertRaises(InsufficientCapacity):
            self.placement.select_host("cluster-2")

    def test_empty_or_unknown_cluster(self):
        self.endpoint.add_cluster(self.dc, "cluster-2")
        for name in ("cluster-2", "cluster-9"):
            with self.subTest(cluster=name):
                with self.assertRaises(InsufficientCapacity):
                    self.placement.select_host(name)

    def test_host_list_cached_but_status_read_fresh(self):
        self.placement.select_host("cluster-1")
        host = self.endpoint.find_entity(self.cluster, EntityKind.HOST, "esx-01")
        self.endpoint.host_status[host.moid] = "red"

        with self.assertRaises(InsufficientCapacity):
            self.placement.select_host("cluster-1")

        self.assertEqual(len(self.host_lookups()), 2)  # the direct find_entity above plus one cached load

    def test_cache_invalidation_reloads_hosts(self):
        self.placement.select_host("cluster-1")
        self.endpoint.add_host(self.cluster, "esx-02", "green")
        self.assertEqual([h.name for h in self.placement.list_hosts("cluster-1")], ["esx-01"])

        self.engine.cache.invalidate()

        self.assertEqual([h.name for h in self.placement.list_hosts("cluster-1")], ["esx-01", "esx-02"])

    def test_affinity_group_is_a_host(self):
        self.assertEqual(self.placement.host_for_affinity("esx-01").name, "esx-01")
        with self.assertRaises(ResolutionError):
            self.placement.host_for_affinity("esx-99")

    def test_list_affinity_groups(self):
        groups = self.engine.list_affinity_groups("cluster-1")

        self.assertEqual(len(groups), 1)
        self.assertEqual((groups[0].id, groups[0].status, groups[0].data_center_id), ("esx-01", "green", "cluster-1"))


class PoolSelectionTests(unittest.TestCase):
    def setUp(self):
        self.endpoint, self.dc, self.cluster = build_region()
        self.endpoint.add_pool(self.cluster, "gold")
        self.engine = ProvisioningEngine(self.endpoint, make_settings(), sleep=no_sleep)
        self.placement = self.engine.placement

    def tearDown(self):
        self.engine.close()

    def test_cluster_id_uses_root_pool(self):
        datacenter, data_center_id, pools = self.placement.select_pools(PlacementRequest(data_center_id="cluster-1"))

        self.assertEqual(datacenter.name, "Datacenter")
        self.assertEqual(data_center_id, "cluster-1")
        self.assertEqual([p.name for p in pools], ["Resources"])

    def test_no_data_center_uses_first_cluster(self):
        _, data_center_id, _ = self.placement.select_pools(PlacementRequest())
        self.assertEqual(data_center_id, "cluster-1")

    def test_datacenter_name_uses_every_pool(self):
        _, _, pools = self.placement.select_pools(PlacementRequest(data_center_id="Datacenter"))
        self.assertEqual([p.name for p in pools], ["Resources", "gold"])

    def test_request_pool_overrides_discovery(self):
        _, _, pools = self.placement.select_pools(PlacementRequest(data_center_id="cluster-1", resource_pool_id="gold"))
        self.assertEqual([p.name for p in pools], ["gold"])

    def test_unknown_data_center(self):
        with self.assertRaises(ResolutionError):
            self.placement.select_pools(PlacementRequest(data_center_id="nowhere"))

    def test_region_without_clusters(self):
        endpoint = FakeEndpoint()
        endpoint.add_datacenter("Datacenter")
        engine = ProvisioningEngine(endpoint, make_settings(), sleep=no_sleep)
        try:
            with self.assertRaises(ValidationError):
                engine.placement.select_pools(PlacementRequest())
        finally:
            engine.close()

    def test_datastore_selection(self):
        self.assertEqual(self.placement.datastore_for(self.dc, None).name, "ds1")
        self.assertEqual(self.placement.datastore_for(self.dc, "ds1").name, "ds1")
        with self.assertRaises(ResolutionError):
            self.placement.datastore_for(self.dc, "ds9")

    def test_place_with_affinity_group(self):
        placement = self.placement.place(PlacementRequest(data_center_id="cluster-1", affinity_group_id="esx-01"))

        self.assertEqual(placement.host.name, "esx-01")
        self.assertEqual(placement.datastore.name, "ds1")


class DirectoryTests(unittest.TestCase):
    def setUp(self):
        self.endpoint, self.dc, self.cluster = build_region()
        self.endpoint.add_datastore(self.dc, "local-ds")
        self.engine = ProvisioningEngine(self.endpoint, make_settings(), sleep=no_sleep)

    def tearDown(self):
        self.engine.close()

    def test_data_centers_are_clusters(self):
        data_centers = self.engine.list_data_centers()

        self.assertEqual([(dc.id, dc.region_id) for dc in data_centers], [("cluster-1", "Datacenter")])

    def test_storage_pools(self):
        pools = self.engine.list_storage_pools()

        self.assertEqual([(p.name, p.data_center_id) for p in pools], [("ds1", "cluster-1"), ("local-ds", None)])
        self.assertEqual(self.engine.directory.data_center_for_storage_pool("DS1"), "cluster-1")

    def test_get_data_center(self):
        self.assertEqual(self.engine.get_data_center("cluster-1").name, "cluster-1")
        self.assertIsNone(self.engine.get_data_center("cluster-9"))

    def test_resource_pools(self):
        self.endpoint.add_pool(self.cluster, "gold")

        self.assertEqual([p.id for p in self.engine.list_resource_pools()], ["Resources", "gold"])

        pools = self.engine.list_resource_pools("cluster-1")
        self.assertEqual([(p.id, p.data_center_id) for p in pools], [("Resources", "cluster-1")])
        self.assertEqual(self.engine.list_resource_pools("cluster-9"), [])

        self.assertEqual(self.engine.get_resource_pool("gold").name, "gold")
        self.assertIsNone(self.engine.get_resource_pool("gold", "cluster-1"))

    def test_networks(self):
        self.endpoint.add_network(self.dc, "VM Network")
        self.endpoint.add_network(self.dc, "isolated", accessible=False)
        self.endpoint.add_network(self.dc, "dv-web", switch="dvSwitch0")
        self.endpoint.add_network(self.dc, "dv-db", switch="dvSwitch0")

        networks = self.engine.list_networks()

        self.assertEqual(
            [(n.id, n.state, n.network_type) for n in networks],
            [
                ("VM Network", NetworkState.AVAILABLE, NetworkType.STANDARD),
                ("isolated", NetworkState.PENDING, NetworkType.STANDARD),
                ("dvSwitch0", NetworkState.AVAILABLE, NetworkType.DISTRIBUTED),
            ],
        )
        self.assertTrue(networks[2].description.startswith("dvSwitch0(dvs-"))
        self.assertEqual({n.region_id for n in networks}, {"Datacenter"})


if __name__ == "__main__":
    unittest.main()
