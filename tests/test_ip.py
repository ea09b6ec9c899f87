import sys

import pytest

from overlaynet.ip import (
    IP4,
    IP4Net,
    IP6,
    IP6Net,
    check_ipv6_subnet,
    ipv6_mask,
    ipv6_subnet_max,
    ipv6_subnet_min,
    is_empty,
    natively_little,
)


def mk_ip4net(s, plen):
    return IP4Net(IP4.parse(s), plen)


def mk_ip6net(s, plen):
    return IP6Net(IP6.parse(s), plen)


def test_ip4_octets_and_strings():
    ip = IP4.from_bytes(bytes([1, 2, 3, 4]))
    assert ip.octets() == (1, 2, 3, 4)
    parsed = IP4.parse("1.2.3.4")
    assert parsed.octets() == (1, 2, 3, 4)
    assert parsed == ip
    assert str(parsed) == "1.2.3.4"
    assert parsed.string_sep("*") == "1*2*3*4"
    assert parsed.to_json() == '"1.2.3.4"'


@pytest.mark.parametrize(
    "address, private",
    [
        ("192.168.0.1", True),
        ("172.16.0.1", True),
        ("172.31.0.1", True),
        ("10.1.2.3", True),
        ("8.8.8.8", False),
        ("172.32.0.1", False),
        ("192.167.0.1", False),
        ("192.169.0.1", False),
    ],
)
def test_ip4_is_private(address, private):
    assert IP4.parse(address).is_private() is private


@pytest.mark.parametrize("text", ["", "1.2.3", "1.2.3.300", "not an ip"])
def test_ip4_parse_invalid(text):
    with pytest.raises(ValueError):
        IP4.parse(text)


def test_ip4_parse_rejects_plain_ipv6():
    with pytest.raises(ValueError):
        IP4.parse("fc00::1")


def test_ip4_parse_accepts_mapped_ipv6():
    assert IP4.parse("::ffff:1.2.3.4") == IP4.parse("1.2.3.4")


def test_ip4_arithmetic_wraps():
    assert IP4.parse("255.255.255.255") + 1 == IP4(0)
    assert IP4(0) - 1 == IP4.parse("255.255.255.255")


def test_ip4_network_order_bytes():
    ip = IP4.parse("1.2.3.4")
    assert ip.network_order().to_bytes(4, sys.byteorder) == bytes([1, 2, 3, 4])
    assert natively_little() is (sys.byteorder == "little")


def test_ip4net_basics():
    n1 = mk_ip4net("1.2.3.0", 24)
    assert str(n1.to_cidr()) == "1.2.3.0/24"
    assert n1.overlaps(n1)

    n2 = mk_ip4net("1.2.0.0", 16)
    assert n1.overlaps(n2)

    n2 = mk_ip4net("1.2.4.0", 24)
    assert not n1.overlaps(n2)

    n2 = mk_ip4net("7.2.4.0", 22)
    assert not n1.overlaps(n2)

    assert n1.contains(IP4.parse("1.2.3.0"))
    assert n1.contains(IP4.parse("1.2.3.4"))
    assert not n1.contains(IP4.parse("1.2.4.0"))

    assert n1.to_json() == '"1.2.3.0/24"'

    assert str(n1.incremented()) == "1.2.3.1/24"
    assert str(n1) == "1.2.3.0/24"


def test_ip4net_mask_network_next():
    n = mk_ip4net("1.2.3.4", 24)
    assert n.mask() == 0xFFFFFF00
    assert n.network() == IP4Net.parse("1.2.3.0/24")
    assert IP4Net.parse("1.2.3.0/24").next() == IP4Net.parse("1.2.4.0/24")
    assert IP4Net().mask() == 0


def test_ip4net_parse_masks_address():
    assert IP4Net.parse("1.2.3.4/24") == mk_ip4net("1.2.3.0", 24)


def test_ip4net_string_sep_and_empty():
    n = mk_ip4net("10.12.13.0", 24)
    assert n.string_sep(".", "-") == "10.12.13.0-24"
    assert IP4Net().empty()
    assert not n.empty()


@pytest.mark.parametrize("text", ["1.2.3.0", "1.2.3.0/33", "fc00::/48", "x/24", "1.2.3.0/"])
def test_ip4net_parse_invalid(text):
    with pytest.raises(ValueError):
        IP4Net.parse(text)


def test_ip6_basics():
    ip = IP6.parse("fc00::1")
    assert str(ip) == "fc00::1"

    zero = IP6.parse("::")
    assert str(zero) == "::"
    assert is_empty(zero)
    assert is_empty(None)
    assert not is_empty(ip)

    assert ip.to_json() == '"fc00::1"'
    assert IP6.from_bytes(bytes.fromhex("fc00" + "00" * 13 + "01")) == ip


@pytest.mark.parametrize(
    "address, private",
    [
        ("fc00::1", True),
        ("fcff::1", True),
        ("fd00::1", True),
        ("fdff::1", True),
        ("2001::", False),
        ("fe00::", False),
    ],
)
def test_ip6_is_private(address, private):
    assert IP6.parse(address).is_private() is private


def test_ip6_parse_invalid():
    with pytest.raises(ValueError):
        IP6.parse("fc00:::1:")


def test_ip6_ordering():
    assert IP6.parse("fc00::1") < IP6.parse("fc00::2")


def test_ip6net_basics():
    assert IP6Net().empty()
    assert mk_ip6net("::", 0).empty()
    assert not mk_ip6net("::", 64).empty()

    n1 = mk_ip6net("fc00:1::", 64)
    assert not n1.empty()
    assert str(n1.to_cidr()) == "fc00:1::/64"
    assert n1.overlaps(n1)

    n2 = mk_ip6net("fc00::", 16)
    assert n1.overlaps(n2)

    n2 = mk_ip6net("fc00:2::", 64)
    assert not n1.overlaps(n2)

    n2 = mk_ip6net("fb00:2::", 48)
    assert not n1.overlaps(n2)

    assert n1.contains(IP6.parse("fc00:1::"))
    assert n1.contains(IP6.parse("fc00:1::1"))
    assert not n1.contains(IP6.parse("fc00:2::"))

    assert n1.to_json() == '"fc00:1::/64"'
    assert str(n1.incremented()) == "fc00:1::1/64"


def test_ip6net_parse_and_network():
    n = IP6Net.parse("fd00:12:13::5/56")
    assert str(n) == "fd00:12:13::/56"
    assert mk_ip6net("fd00:12:13::5", 56).network() == n
    assert n.string_sep(":", "-") == "fd00:12:13::-56"


@pytest.mark.parametrize("text", ["fc00::", "fc00::/129", "10.0.0.0/8"])
def test_ip6net_parse_invalid(text):
    with pytest.raises(ValueError):
        IP6Net.parse(text)


def test_ipv6_subnet_bounds():
    network = IP6Net.parse("fc00::/48")
    size = 1 << (128 - 64)
    assert str(ipv6_subnet_min(network.ip, size)) == "fc00:0:0:1::"
    assert str(ipv6_subnet_max(network.next().ip, size)) == "fc00:0:0:ffff::"


def test_check_ipv6_subnet():
    mask = ipv6_mask(64)
    assert check_ipv6_subnet(IP6.parse("fc00:0:0:1::"), mask)
    assert not check_ipv6_subnet(IP6.parse("fc00:0:0:1::1"), mask)
    assert ipv6_mask(129) == 0
    assert ipv6_mask(128) == (1 << 128) - 1