import ipaddress

import pytest

from overlaynet.annotations import new_annotations
from overlaynet.ip import IP4, IP4Net, IP6, IP6Net
from overlaynet.nodes import (
    Node,
    NodeLeaseError,
    contains_cidr,
    is_subnet_managed,
    lease_changed,
    node_to_lease,
)

ANN = new_annotations("flannel.alpha.coreos.com")


@pytest.mark.parametrize(
    "cidr1, cidr2, expected",
    [
        ("10.244.0.0/16", "10.244.0.0/16", True),
        ("10.244.0.0/16", "10.244.0.0/24", True),
        ("10.244.0.0/16", "10.244.255.0/24", True),
        ("10.244.0.0/16", "10.244.0.0/15", False),
        ("10.244.0.0/16", "192.168.0.0/24", False),
        ("2001:0db8:1234::/48", "2001:0db8:1234::/48", True),
        ("2001:0db8:1234::/48", "2001:0db8:1234::/64", True),
        ("2001:0db8:1234::/48", "2001:0db8:1234:ffff::/64", True),
        ("2001:0db8:1234::/48", "2001:0db8:1234::/47", False),
        ("2001:0db8:1234::/48", "fe02::/32", False),
    ],
)
def test_contains_cidr(cidr1, cidr2, expected):
    assert contains_cidr(cidr1, cidr2) is expected
    net1 = ipaddress.ip_network(cidr1, strict=False)
    net2 = ipaddress.ip_network(cidr2, strict=False)
    assert contains_cidr(net1, net2) is expected


def test_contains_cidr_mixed_families():
    assert contains_cidr("10.244.0.0/16", "2001:0db8:1234::/64") is False


def v4_node(**extra):
    notes = {
        ANN.backend_public_ip: "10.0.0.5",
        ANN.backend_data: '{"VNI": 1}',
        ANN.backend_type: "vxlan",
        ANN.subnet_kube_managed: "true",
    }
    notes.update(extra)
    return Node(name="node1", annotations=notes, pod_cidr="10.244.1.0/24",
                pod_cidrs=["10.244.1.0/24"])


def test_node_to_lease_ipv4():
    lease = node_to_lease(v4_node(), ANN, True, False)
    assert lease.enable_ipv4 is True
    assert lease.enable_ipv6 is False
    assert lease.subnet == IP4Net.parse("10.244.1.0/24")
    assert lease.attrs.public_ip == IP4.parse("10.0.0.5")
    assert lease.attrs.backend_data == {"VNI": 1}
    assert lease.attrs.backend_type == "vxlan"
    assert lease.ipv6_subnet.empty()


def test_node_to_lease_dual_stack():
    node = v4_node(**{ANN.backend_public_ipv6: "fd00::5", ANN.backend_v6_data: '{"VNI": 2}'})
    node.pod_cidrs = ["10.244.1.0/24", "fd00:10:244:1::/64"]
    lease = node_to_lease(node, ANN, True, True)
    assert lease.enable_ipv4 and lease.enable_ipv6
    assert lease.ipv6_subnet == IP6Net.parse("fd00:10:244:1::/64")
    assert lease.attrs.public_ipv6 == IP6.parse("fd00::5")
    assert lease.attrs.backend_v6_data == {"VNI": 2}


def test_node_to_lease_missing_public_ip():
    node = v4_node()
    del node.annotations[ANN.backend_public_ip]
    with pytest.raises(NodeLeaseError):
        node_to_lease(node, ANN, True, False)


def test_node_to_lease_bad_pod_cidr():
    node = v4_node()
    node.pod_cidr = "not-a-cidr"
    with pytest.raises(NodeLeaseError):
        node_to_lease(node, ANN, True, False)


def test_node_to_lease_ipv6_without_ipv6_cidr():
    node = v4_node(**{ANN.backend_public_ipv6: "fd00::5"})
    with pytest.raises(NodeLeaseError):
        node_to_lease(node, ANN, False, True)


def test_node_to_lease_bad_backend_data():
    node = v4_node(**{ANN.backend_data: "{broken"})
    with pytest.raises(NodeLeaseError):
        node_to_lease(node, ANN, True, False)


def test_lease_changed_same_annotations():
    assert lease_changed(v4_node(), v4_node(), ANN, True, False) is False


def test_lease_changed_backend_data():
    new = v4_node(**{ANN.backend_data: '{"VNI": 9}'})
    assert lease_changed(v4_node(), new, ANN, True, False) is True


def test_lease_changed_ignores_ipv6_when_disabled():
    new = v4_node(**{ANN.backend_public_ipv6: "fd00::9"})
    assert lease_changed(v4_node(), new, ANN, True, False) is False


def test_lease_changed_dual_stack_unchanged_v6_wins():
    new = v4_node(**{ANN.backend_public_ip: "10.0.0.6"})
    assert lease_changed(v4_node(), new, ANN, True, True) is False


def test_is_subnet_managed():
    assert is_subnet_managed(v4_node(), ANN) is True
    assert is_subnet_managed(v4_node(**{ANN.subnet_kube_managed: "false"}), ANN) is False
    assert is_subnet_managed(Node(name="bare"), ANN) is False