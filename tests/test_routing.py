import ipaddress

from overlaynet.routing import Route


def route(index, subnet, gateway):
    return Route(index, ipaddress.ip_network(subnet), ipaddress.ip_address(gateway))


def test_identical_routes_equal():
    a = route(3, "10.1.0.0/16", "192.168.1.1")
    b = route(3, "10.1.0.0/16", "192.168.1.1")
    assert a.equal(b)
    assert b.equal(a)


def test_interface_index_ignored():
    a = route(3, "10.1.0.0/16", "192.168.1.1")
    b = route(7, "10.1.0.0/16", "192.168.1.1")
    assert a.equal(b)


def test_different_gateway_not_equal():
    a = route(3, "10.1.0.0/16", "192.168.1.1")
    b = route(3, "10.1.0.0/16", "192.168.1.2")
    assert not a.equal(b)


def test_different_prefix_not_equal():
    a = route(3, "10.1.0.0/16", "192.168.1.1")
    b = route(3, "10.1.0.0/24", "192.168.1.1")
    assert not a.equal(b)


def test_mapped_gateway_equals_ipv4():
    a = route(1, "10.1.0.0/16", "192.168.1.1")
    b = route(1, "10.1.0.0/16", "::ffff:192.168.1.1")
    assert a.equal(b)


def test_interface_and_network_forms_compare():
    a = Route(
        1,
        ipaddress.ip_interface("fc00:1::/64"),
        ipaddress.ip_address("fc00::1"),
    )
    b = route(1, "fc00:1::/64", "fc00::1")
    assert a.equal(b)
    c = route(1, "fc00:2::/64", "fc00::1")
    assert not a.equal(c)