"""IPv4 and IPv6 addresses and networks held as plain integers."""

from __future__ import annotations

import ipaddress
import json
import sys
from dataclasses import dataclass, replace

_U32 = 0xFFFFFFFF
_U128 = (1 << 128) - 1


def natively_little() -> bool:
    """Report whether this machine stores integers little-endian."""
    return sys.byteorder == "little"


def _parse_address(text: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        raise ValueError("Invalid IP address format") from None


def _parse_cidr(text: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    addr, sep, prefix = text.partition("/")
    if not sep or not (prefix.isascii() and prefix.isdigit()):
        raise ValueError(f"invalid CIDR address: {text}")
    try:
        return ipaddress.ip_network(f"{addr}/{int(prefix)}", strict=False)
    except ValueError:
        raise ValueError(f"invalid CIDR address: {text}") from None


@dataclass(frozen=True, order=True)
class IP4:
    """An IPv4 address as an unsigned 32-bit integer."""

    value: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _U32:
            raise ValueError(f"IPv4 value out of range: {self.value}")

    @classmethod
    def parse(cls, text: str) -> IP4:
        addr = _parse_address(text)
        if isinstance(addr, ipaddress.IPv6Address):
            if addr.ipv4_mapped is None:
                raise ValueError("Address is not an IPv4 address")
            addr = addr.ipv4_mapped
        return cls(int(addr))

    @classmethod
    def from_bytes(cls, data: bytes) -> IP4:
        """Build an address from the first four bytes, most significant first."""
        if len(data) < 4:
            raise ValueError("an IPv4 address needs four bytes")
        return cls(int.from_bytes(bytes(data[:4]), "big"))

    def octets(self) -> tuple[int, int, int, int]:
        v = self.value
        return (v >> 24) & 0xFF, (v >> 16) & 0xFF, (v >> 8) & 0xFF, v & 0xFF

    def string_sep(self, sep: str) -> str:
        return sep.join(str(octet) for octet in self.octets())

    def is_private(self) -> bool:
        """Whether the address is private according to RFC 1918."""
        a, b, _, _ = self.octets()
        return a == 10 or (a == 172 and b & 0xF0 == 16) or (a == 192 and b == 168)

    def network_order(self) -> int:
        """The integer whose in-memory bytes are the address in network order."""
        if natively_little():
            return int.from_bytes(self.value.to_bytes(4, "big"), "little")
        return self.value

    def to_json(self) -> str:
        return json.dumps(str(self))

    def __str__(self) -> str:
        return self.string_sep(".")

    def __int__(self) -> int:
        return self.value

    def __add__(self, other: int | IP4) -> IP4:
        return IP4((self.value + int(other)) & _U32)

    def __sub__(self, other: int | IP4) -> IP4:
        return IP4((self.value - int(other)) & _U32)

    def __and__(self, other: int | IP4) -> IP4:
        return IP4(self.value & int(other) & _U32)


@dataclass(frozen=True)
class IP4Net:
    """An IPv4 address with a prefix length; the address is not masked."""

    ip: IP4 = IP4()
    prefix_len: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.prefix_len <= 32:
            raise ValueError(f"IPv4 prefix length out of range: {self.prefix_len}")

    @classmethod
    def parse(cls, text: str) -> IP4Net:
        """Parse CIDR notation; the result holds the network address."""
        net = _parse_cidr(text)
        if not isinstance(net, ipaddress.IPv4Network):
            raise ValueError("Address is not an IPv4 address")
        return cls(IP4(int(net.network_address)), net.prefixlen)

    def string_sep(self, octet_sep: str, prefix_sep: str) -> str:
        return f"{self.ip.string_sep(octet_sep)}{prefix_sep}{self.prefix_len}"

    def mask(self) -> int:
        return (_U32 << (32 - self.prefix_len)) & _U32

    def network(self) -> IP4Net:
        return IP4Net(self.ip & self.mask(), self.prefix_len)

    def next(self) -> IP4Net:
        return IP4Net(self.ip + (1 << (32 - self.prefix_len)), self.prefix_len)

    def incremented(self) -> IP4Net:
        """The same network with its address increased by one."""
        return replace(self, ip=self.ip + 1)

    def overlaps(self, other: IP4Net) -> bool:
        mask = self.mask() if self.prefix_len < other.prefix_len else other.mask()
        return (self.ip.value & mask) == (other.ip.value & mask)

    def contains(self, ip: IP4) -> bool:
        mask = self.mask()
        return (self.ip.value & mask) == (ip.value & mask)

    def empty(self) -> bool:
        return self.ip.value == 0 and self.prefix_len == 0

    def to_cidr(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface(f"{self.ip}/{self.prefix_len}")

    def to_json(self) -> str:
        return json.dumps(str(self))

    def __str__(self) -> str:
        return f"{self.ip}/{self.prefix_len}"


@dataclass(frozen=True, order=True)
class IP6:
    """An IPv6 address as an unsigned 128-bit integer."""

    value: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _U128:
            raise ValueError(f"IPv6 value out of range: {self.value}")

    @classmethod
    def parse(cls, text: str) -> IP6:
        addr = _parse_address(text)
        if isinstance(addr, ipaddress.IPv4Address):
            return cls((0xFFFF << 32) | int(addr))
        return cls(int(addr))

    @classmethod
    def from_bytes(cls, data: bytes) -> IP6:
        return cls(int.from_bytes(bytes(data), "big"))

    def is_private(self) -> bool:
        """Whether the address is a unique local address (RFC 4193)."""
        return (self.value >> 120) & 0xFE == 0xFC

    def to_json(self) -> str:
        return json.dumps(str(self))

    def __str__(self) -> str:
        v = self.value
        if (1 << 24) <= v < (1 << 32):
            # Values that fit in exactly four bytes are shown as IPv4.
            return str(ipaddress.IPv4Address(v))
        addr = ipaddress.IPv6Address(v)
        if addr.ipv4_mapped is not None:
            return str(addr.ipv4_mapped)
        return addr.compressed

    def __int__(self) -> int:
        return self.value


def ipv6_mask(prefix_len: int) -> int:
    """The 128-bit mask for a prefix length, or 0 if the length is invalid."""
    if not 0 <= prefix_len <= 128:
        return 0
    return ((1 << prefix_len) - 1) << (128 - prefix_len)


def is_empty(ip6: IP6 | None) -> bool:
    return ip6 is None or ip6.value == 0


def ipv6_subnet_min(network_ip: IP6, subnet_size: int) -> IP6:
    return IP6(network_ip.value + subnet_size)


def ipv6_subnet_max(network_ip: IP6, subnet_size: int) -> IP6:
    return IP6(network_ip.value - subnet_size)


def check_ipv6_subnet(subnet_ip: IP6, mask: int) -> bool:
    return subnet_ip.value == subnet_ip.value & mask


@dataclass(frozen=True)
class IP6Net:
    """An IPv6 address with a prefix length; the address is not masked."""

    ip: IP6 = IP6()
    prefix_len: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.prefix_len <= 128:
            raise ValueError(f"IPv6 prefix length out of range: {self.prefix_len}")

    @classmethod
    def parse(cls, text: str) -> IP6Net:
        """Parse CIDR notation; the result holds the network address."""
        net = _parse_cidr(text)
        if not isinstance(net, ipaddress.IPv6Network):
            raise ValueError("Address is not an IPv6 address")
        return cls(IP6(int(net.network_address)), net.prefixlen)

    def string_sep(self, hex_sep: str, prefix_sep: str) -> str:
        return f"{self.ip}{prefix_sep}{self.prefix_len}"

    def mask(self) -> int:
        return ipv6_mask(self.prefix_len)

    def network(self) -> IP6Net:
        return IP6Net(IP6(self.ip.value & self.mask()), self.prefix_len)

    def next(self) -> IP6Net:
        return IP6Net(IP6(self.ip.value + (1 << (128 - self.prefix_len))), self.prefix_len)

    def incremented(self) -> IP6Net:
        """The same network with its address increased by one."""
        return replace(self, ip=IP6(self.ip.value + 1))

    def overlaps(self, other: IP6Net) -> bool:
        mask = self.mask() if self.prefix_len < other.prefix_len else other.mask()
        return (self.ip.value & mask) == (other.ip.value & mask)

    def contains(self, ip: IP6) -> bool:
        mask = self.mask()
        return (self.ip.value & mask) == (ip.value & mask)

    def empty(self) -> bool:
        return is_empty(self.ip) and self.prefix_len == 0

    def to_cidr(self) -> ipaddress.IPv6Interface:
        return ipaddress.IPv6Interface(f"{ipaddress.IPv6Address(self.ip.value)}/{self.prefix_len}")

    def to_json(self) -> str:
        return json.dumps(str(self))

    def __str__(self) -> str:
        return f"{self.ip}/{self.prefix_len}"