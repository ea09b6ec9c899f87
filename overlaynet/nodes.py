"""Cluster nodes and how their annotations turn into subnet leases."""

from __future__ import annotations

import ipaddress
import json
from dataclasses import dataclass, field
from typing import Any

from overlaynet.annotations import Annotations
from overlaynet.ip import IP4, IP4Net, IP6, IP6Net
from overlaynet.subnet import Lease

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


class NodeLeaseError(ValueError):
    """A node's annotations or pod CIDRs do not describe a valid lease."""


@dataclass
class Node:
    """The parts of a cluster node that subnet management looks at."""

    name: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    pod_cidr: str = ""
    pod_cidrs: list[str] = field(default_factory=list)


def _network(value: Any) -> Network:
    if isinstance(value, str):
        return ipaddress.ip_network(value, strict=False)
    if isinstance(value, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
        return value.network
    return value


def contains_cidr(net1: Any, net2: Any) -> bool:
    """Whether network ``net1`` wholly contains network ``net2``.

    Either argument may be an ``ipaddress`` network or interface, or CIDR text.
    """
    outer, inner = _network(net1), _network(net2)
    return outer.prefixlen <= inner.prefixlen and inner.network_address in outer


def _ipv6_pod_cidr(pod_cidrs: list[str]) -> ipaddress.IPv6Network | None:
    """The first IPv6 network among the pod CIDRs, if any."""
    for text in pod_cidrs:
        try:
            net = ipaddress.ip_network(text, strict=False)
        except ValueError as exc:
            raise NodeLeaseError(f"invalid CIDR address: {text}") from exc
        if isinstance(net, ipaddress.IPv6Network):
            return net
    return None


def _raw_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise NodeLeaseError(f"invalid backend data: {exc}") from exc


def node_to_lease(
    node: Node, annotations: Annotations, enable_ipv4: bool, enable_ipv6: bool
) -> Lease:
    """Build the lease a node advertises through its annotations."""
    notes = node.annotations
    lease = Lease()

    if enable_ipv4:
        try:
            lease.attrs.public_ip = IP4.parse(notes.get(annotations.backend_public_ip, ""))
            lease.subnet = IP4Net.parse(node.pod_cidr)
        except ValueError as exc:
            raise NodeLeaseError(str(exc)) from exc
        lease.attrs.backend_data = _raw_json(notes.get(annotations.backend_data, ""))
        lease.enable_ipv4 = True

    if enable_ipv6:
        try:
            lease.attrs.public_ipv6 = IP6.parse(notes.get(annotations.backend_public_ipv6, ""))
        except ValueError as exc:
            raise NodeLeaseError(str(exc)) from exc
        lease.attrs.backend_v6_data = _raw_json(notes.get(annotations.backend_v6_data, ""))
        cidr6 = _ipv6_pod_cidr(node.pod_cidrs)
        if cidr6 is None:
            raise NodeLeaseError(f"node {node.name!r} has no IPv6 pod CIDR")
        lease.ipv6_subnet = IP6Net(IP6(int(cidr6.network_address)), cidr6.prefixlen)
        lease.enable_ipv6 = True

    lease.attrs.backend_type = notes.get(annotations.backend_type, "")
    return lease


def lease_changed(
    old: Node, new: Node, annotations: Annotations, enable_ipv4: bool, enable_ipv6: bool
) -> bool:
    """Whether an update of a node changes the lease it advertises.

    An enabled stack whose backend data, type and public address are all
    unchanged marks the update as not changing the lease.
    """
    before, after = old.annotations, new.annotations

    def same(*names: str) -> bool:
        return all(before.get(name, "") == after.get(name, "") for name in names)

    changed = True
    if enable_ipv4 and same(
        annotations.backend_data, annotations.backend_type, annotations.backend_public_ip
    ):
        changed = False
    if enable_ipv6 and same(
        annotations.backend_v6_data, annotations.backend_type, annotations.backend_public_ipv6
    ):
        changed = False
    return changed


def is_subnet_managed(node: Node, annotations: Annotations) -> bool:
    """Whether the node's subnet is marked as managed by the kube subnet manager."""
    return node.annotations.get(annotations.subnet_kube_managed) == "true"