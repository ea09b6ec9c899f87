"""A subnet manager that takes leases from cluster nodes and their annotations."""

from __future__ import annotations

import copy
import ipaddress
import json
import logging
import os
import queue
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from overlaynet.annotations import Annotations, new_annotations
from overlaynet.config import Config
from overlaynet.ip import IP4, IP4Net, IP6, IP6Net
from overlaynet.nodes import (
    Node,
    NodeLeaseError,
    contains_cidr,
    is_subnet_managed,
    lease_changed,
    node_to_lease,
)
from overlaynet.subnet import (
    Event,
    EventType,
    Lease,
    LeaseAttrs,
    LeaseWatchResult,
    Manager,
    WatchCancelled,
)

log = logging.getLogger(__name__)

DEFAULT_EVENT_QUEUE_DEPTH = 5000
LEASE_DURATION = timedelta(hours=24)
_POLL_INTERVAL = 0.1
_DEPTH_TEXT = re.compile(r"[+-]?[0-9]+")
_DUAL_STACK_BACKENDS = ("vxlan", "host-gw", "wireguard")


class UnimplementedError(NotImplementedError):
    """The operation is not offered by this subnet manager."""

    def __init__(self, message: str = "unimplemented") -> None:
        super().__init__(message)


class NodeClient(ABC):
    """Access to the cluster's node objects."""

    @abstractmethod
    def get_node(self, name: str) -> Node:
        """Return the current state of a node."""

    @abstractmethod
    def patch_node(self, name: str, node: Node) -> None:
        """Store the node's changed annotations."""

    @abstractmethod
    def set_network_available(self, name: str) -> None:
        """Clear the node's network-unavailable condition."""


def event_queue_depth(environ: Mapping[str, str] | None = None) -> int:
    """The event queue depth from EVENT_QUEUE_DEPTH, or the default.

    Values that are not positive keep the default; text that is not an
    integer is an error.
    """
    env = os.environ if environ is None else environ
    text = env.get("EVENT_QUEUE_DEPTH", "")
    if not text:
        return DEFAULT_EVENT_QUEUE_DEPTH
    if not _DEPTH_TEXT.fullmatch(text):
        raise ValueError(f"env EVENT_QUEUE_DEPTH={text} format error: invalid syntax")
    depth = int(text)
    return depth if depth > 0 else DEFAULT_EVENT_QUEUE_DEPTH


def _raw_json_text(value: Any) -> str:
    if value is None:
        return "null"
    return json.dumps(value, separators=(",", ":"))


def _ip6_text(value: IP6 | None) -> str:
    return "" if value is None else str(value)


def _parse_network(text: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError as exc:
        raise NodeLeaseError(f"invalid CIDR address: {text}") from exc


class KubeSubnetManager(Manager):
    """Leases come from the pod CIDRs the cluster assigns to each node."""

    def __init__(
        self,
        client: NodeClient,
        config: Config,
        node_name: str,
        prefix: str,
        set_node_network_unavailable: bool = False,
        environ: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
        watch_timeout: float | None = None,
    ) -> None:
        self.annotations: Annotations = new_annotations(prefix)
        self.client = client
        self.subnet_conf = config
        self.node_name = node_name
        self.enable_ipv4 = config.enable_ipv4
        self.enable_ipv6 = config.enable_ipv6
        self.set_node_network_unavailable = set_node_network_unavailable
        self.events: queue.Queue[Event] = queue.Queue(maxsize=event_queue_depth(environ))
        self.cancel = cancel if cancel is not None else threading.Event()
        self.watch_timeout = watch_timeout

    def handle_add_lease_event(self, event_type: EventType, node: Node) -> None:
        """Queue an event for a node that was added or removed."""
        if not is_subnet_managed(node, self.annotations):
            return
        try:
            lease = node_to_lease(node, self.annotations, self.enable_ipv4, self.enable_ipv6)
        except NodeLeaseError as exc:
            log.info("Error turning node %r to lease: %s", node.name, exc)
            return
        self.events.put(Event(event_type, lease))

    def handle_update_lease_event(self, old: Node, new: Node) -> None:
        """Queue an added event when a node's update changes its lease."""
        if not is_subnet_managed(new, self.annotations):
            return
        if not lease_changed(old, new, self.annotations, self.enable_ipv4, self.enable_ipv6):
            return
        try:
            lease = node_to_lease(new, self.annotations, self.enable_ipv4, self.enable_ipv6)
        except NodeLeaseError as exc:
            log.info("Error turning node %r to lease: %s", new.name, exc)
            return
        self.events.put(Event(EventType.ADDED, lease))

    def get_network_config(self) -> Config:
        return self.subnet_conf

    def _needs_update(self, notes: dict[str, str], attrs: LeaseAttrs, bd: str, v6_bd: str) -> bool:
        a = self.annotations
        ip = str(attrs.public_ip)
        overwrite = notes.get(a.backend_public_ip_overwrite, "")
        v4_differs = (
            notes.get(a.backend_data, "") != bd
            or notes.get(a.backend_type, "") != attrs.backend_type
            or notes.get(a.backend_public_ip, "") != ip
            or notes.get(a.subnet_kube_managed, "") != "true"
            or (overwrite != "" and overwrite != ip)
        )
        if v4_differs:
            return True
        if attrs.public_ipv6 is None:
            return False
        ip6 = str(attrs.public_ipv6)
        overwrite6 = notes.get(a.backend_public_ipv6_overwrite, "")
        return (
            notes.get(a.backend_v6_data, "") != v6_bd
            or notes.get(a.backend_type, "") != attrs.backend_type
            or notes.get(a.backend_public_ipv6, "") != ip6
            or notes.get(a.subnet_kube_managed, "") != "true"
            or (overwrite6 != "" and overwrite6 != ip6)
        )

    def _annotate(self, notes: dict[str, str], attrs: LeaseAttrs, bd: str, v6_bd: str) -> None:
        a = self.annotations
        backend = attrs.backend_type
        notes[a.backend_type] = backend

        if (backend in ("vxlan", "wireguard") and bd != "null") or backend != "vxlan":
            notes[a.backend_data] = bd
            overwrite = notes.get(a.backend_public_ip_overwrite, "")
            if overwrite:
                if notes.get(a.backend_public_ip, "") != overwrite:
                    log.info(
                        "Overriding public ip with '%s' from node annotation '%s'",
                        overwrite,
                        a.backend_public_ip_overwrite,
                    )
                    notes[a.backend_public_ip] = overwrite
            else:
                notes[a.backend_public_ip] = str(attrs.public_ip)

        has_v6 = attrs.public_ipv6 is not None
        if (
            (backend == "vxlan" and v6_bd != "null")
            or (backend == "wireguard" and v6_bd != "null" and has_v6)
            or (backend == "host-gw" and has_v6)
        ):
            notes[a.backend_v6_data] = v6_bd
            overwrite6 = notes.get(a.backend_public_ipv6_overwrite, "")
            if overwrite6:
                if notes.get(a.backend_public_ipv6, "") != overwrite6:
                    log.info(
                        "Overriding public ipv6 with '%s' from node annotation '%s'",
                        overwrite6,
                        a.backend_public_ipv6_overwrite,
                    )
                    notes[a.backend_public_ipv6] = overwrite6
            else:
                notes[a.backend_public_ipv6] = _ip6_text(attrs.public_ipv6)

        notes[a.subnet_kube_managed] = "true"

    def acquire_lease(self, attrs: LeaseAttrs) -> Lease:
        """Publish the attributes on this node and return the lease for its pod CIDR."""
        cached = self.client.get_node(self.node_name)
        node = copy.deepcopy(cached)
        if not node.pod_cidr:
            raise NodeLeaseError(f'node "{self.node_name}" pod cidr not assigned')

        bd = _raw_json_text(attrs.backend_data)
        v6_bd = _raw_json_text(attrs.backend_v6_data)

        cidr = _parse_network(node.pod_cidr)
        cidr6: ipaddress.IPv6Network | None = None
        for text in node.pod_cidrs:
            net = _parse_network(text)
            if isinstance(net, ipaddress.IPv6Network):
                cidr6 = net
                break

        if self._needs_update(node.annotations, attrs, bd, v6_bd):
            self._annotate(node.annotations, attrs, bd, v6_bd)
            self.client.patch_node(self.node_name, node)

        if self.set_node_network_unavailable:
            log.info("Setting NodeNetworkUnavailable")
            try:
                self.client.set_network_available(self.node_name)
            except Exception as exc:  # noqa: BLE001 - failure here is only reported
                log.error(
                    "Unable to set NodeNetworkUnavailable to False for %r: %s",
                    self.node_name,
                    exc,
                )
        else:
            log.info("Skip setting NodeNetworkUnavailable")

        lease = Lease(attrs=attrs, expiration=datetime.now() + LEASE_DURATION)
        conf = self.subnet_conf

        if self.enable_ipv4:
            network = conf.network.to_cidr().network
            if not isinstance(cidr, ipaddress.IPv4Network) or not contains_cidr(network, cidr):
                raise NodeLeaseError(
                    f'subnet "{conf.network}" specified in the flannel net config doesn\'t '
                    f'contain "{cidr}" PodCIDR of the "{self.node_name}" node.'
                )
            lease.subnet = IP4Net(IP4(int(cidr.network_address)), cidr.prefixlen)

        if cidr6 is not None:
            if conf.ipv6_network.empty():
                raise NodeLeaseError(
                    f'subnet "{cidr6}" specified in the PodCIDR, but doesn\'t exist in the '
                    f'flannel net config of the "{self.node_name}" node.'
                )
            if not contains_cidr(conf.ipv6_network.to_cidr().network, cidr6):
                raise NodeLeaseError(
                    f'subnet "{conf.ipv6_network}" specified in the flannel net config '
                    f'doesn\'t contain "{cidr6}" IPv6 PodCIDR of the "{self.node_name}" node.'
                )
            lease.ipv6_subnet = IP6Net(IP6(int(cidr6.network_address)), cidr6.prefixlen)

        # Only some backends handle dual stack; the rest always get IPv4 alone.
        if attrs.backend_type not in _DUAL_STACK_BACKENDS:
            lease.enable_ipv4 = True
            lease.enable_ipv6 = False
        return lease

    def watch_leases(self, cursor: Any) -> LeaseWatchResult:
        """Wait for the next queued node event.

        Raises WatchCancelled when the cancel event is set or the watch
        timeout runs out.
        """
        deadline = None if self.watch_timeout is None else time.monotonic() + self.watch_timeout
        while True:
            if self.cancel.is_set():
                raise WatchCancelled("context canceled")
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise WatchCancelled("context deadline exceeded")
                wait = min(wait, remaining)
            try:
                event = self.events.get(timeout=wait)
            except queue.Empty:
                continue
            return LeaseWatchResult(events=[event])

    def renew_lease(self, lease: Lease) -> None:
        raise UnimplementedError()

    def watch_lease(self, sn: IP4Net, sn6: IP6Net, cursor: Any) -> LeaseWatchResult:
        raise UnimplementedError()

    def name(self) -> str:
        return f"Kubernetes Subnet Manager - {self.node_name}"