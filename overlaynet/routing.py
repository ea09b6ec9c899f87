"""Route records used by routers."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

Subnet = (
    ipaddress.IPv4Network
    | ipaddress.IPv6Network
    | ipaddress.IPv4Interface
    | ipaddress.IPv6Interface
)
Address = ipaddress.IPv4Address | ipaddress.IPv6Address


def _subnet_address(subnet: Subnet) -> Address:
    if isinstance(subnet, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
        return subnet.ip
    return subnet.network_address


def _normalize(addr: Address) -> Address:
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


@dataclass(frozen=True)
class Route:
    """A route from an interface to a destination subnet through a gateway."""

    interface_index: int
    destination_subnet: Subnet
    gateway_address: Address

    def equal(self, other: Route) -> bool:
        """Compare destination and gateway; the interface index is ignored."""
        mine, theirs = self.destination_subnet, other.destination_subnet
        return (
            _normalize(_subnet_address(mine)) == _normalize(_subnet_address(theirs))
            and mine.netmask == theirs.netmask
            and _normalize(self.gateway_address) == _normalize(other.gateway_address)
        )