"""Subnet leases, their keys, watch events and the subnet manager interface."""

from __future__ import annotations

import enum
import ipaddress
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from overlaynet.ip import IP4, IP4Net, IP6, IP6Net

_SUBNET_KEY = re.compile(r"(\d+\.\d+.\d+.\d+)-(\d+)(?:&([a-f\d:]+)-(\d+))?$", re.ASCII)
_MISSING = object()


class LeaseTakenError(Exception):
    """The requested lease is already held by someone else."""

    def __init__(self, message: str = "subnet: lease already taken") -> None:
        super().__init__(message)


class NoMoreTriesError(Exception):
    """Acquiring a lease was retried too many times."""

    def __init__(self, message: str = "subnet: no more tries") -> None:
        super().__init__(message)


class WatchCancelled(Exception):
    """A watch was cancelled or ran past its deadline."""


def _lookup(doc: dict[str, Any], name: str) -> Any:
    """Find a JSON member by name, ignoring case; the last match wins."""
    found = _MISSING
    wanted = name.lower()
    for key, value in doc.items():
        if key.lower() == wanted:
            found = value
    return found


@dataclass
class LeaseAttrs:
    """Attributes a node publishes with its lease."""

    public_ip: IP4 = IP4()
    public_ipv6: IP6 | None = None
    backend_type: str = ""
    backend_data: Any = None
    backend_v6_data: Any = None

    def to_json(self) -> str:
        doc: dict[str, Any] = {
            "PublicIP": str(self.public_ip),
            "PublicIPv6": None if self.public_ipv6 is None else str(self.public_ipv6),
        }
        if self.backend_type:
            doc["BackendType"] = self.backend_type
        if self.backend_data is not None:
            doc["BackendData"] = self.backend_data
        if self.backend_v6_data is not None:
            doc["BackendV6Data"] = self.backend_v6_data
        return json.dumps(doc, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str | bytes) -> LeaseAttrs:
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid lease attributes: {exc}") from exc
        if not isinstance(doc, dict):
            raise ValueError("lease attributes must be a JSON object")

        attrs = cls()
        public_ip = _lookup(doc, "PublicIP")
        if public_ip is not _MISSING:
            if not isinstance(public_ip, str):
                raise ValueError("Invalid IP address format")
            attrs.public_ip = IP4.parse(public_ip)

        public_ipv6 = _lookup(doc, "PublicIPv6")
        if public_ipv6 is not _MISSING and public_ipv6 is not None:
            if not isinstance(public_ipv6, str):
                raise ValueError("Invalid IP address format")
            attrs.public_ipv6 = IP6.parse(public_ipv6)

        backend_type = _lookup(doc, "BackendType")
        if backend_type is not _MISSING and backend_type is not None:
            if not isinstance(backend_type, str):
                raise ValueError("BackendType must be a string")
            attrs.backend_type = backend_type

        backend_data = _lookup(doc, "BackendData")
        if backend_data is not _MISSING:
            attrs.backend_data = backend_data
        backend_v6_data = _lookup(doc, "BackendV6Data")
        if backend_v6_data is not _MISSING:
            attrs.backend_v6_data = backend_v6_data
        return attrs


@dataclass
class Lease:
    """A subnet (and optionally an IPv6 subnet) leased to one node."""

    enable_ipv4: bool = False
    enable_ipv6: bool = False
    subnet: IP4Net = IP4Net()
    ipv6_subnet: IP6Net = IP6Net()
    attrs: LeaseAttrs = field(default_factory=LeaseAttrs)
    expiration: datetime | None = None
    asof: int = 0

    def key(self) -> str:
        return make_subnet_key(self.subnet, self.ipv6_subnet)


class EventType(enum.Enum):
    ADDED = 0
    REMOVED = 1

    def to_json(self) -> str:
        return json.dumps(self.name.lower())

    @classmethod
    def from_json(cls, text: str | bytes) -> EventType:
        if isinstance(text, bytes):
            text = text.decode("utf-8", "replace")
        if text == '"added"':
            return cls.ADDED
        if text == '"removed"':
            return cls.REMOVED
        raise ValueError("bad event type")


@dataclass
class Event:
    type: EventType
    lease: Lease


@dataclass
class LeaseWatchResult:
    """Either events or a full snapshot, plus the cursor to continue from.

    An empty event list means the cursor fell out of range and the snapshot
    holds the current leases, even if there are none.
    """

    events: list[Event] = field(default_factory=list)
    snapshot: list[Lease] = field(default_factory=list)
    cursor: Any = None


class Manager(ABC):
    """Hands out subnet leases and reports changes to them."""

    @abstractmethod
    def get_network_config(self) -> Any:
        """Return the parsed network configuration."""

    @abstractmethod
    def acquire_lease(self, attrs: LeaseAttrs) -> Lease:
        """Acquire a lease for this node."""

    @abstractmethod
    def renew_lease(self, lease: Lease) -> None:
        """Extend the lease's expiration."""

    @abstractmethod
    def watch_lease(self, sn: IP4Net, sn6: IP6Net, cursor: Any) -> LeaseWatchResult:
        """Wait for a change to one lease."""

    @abstractmethod
    def watch_leases(self, cursor: Any) -> LeaseWatchResult:
        """Wait for a change to any lease."""

    @abstractmethod
    def name(self) -> str:
        """A human readable description of the manager."""


def parse_subnet_key(key: str) -> tuple[IP4Net | None, IP6Net | None]:
    """Parse a key such as ``10.1.2.0-24`` or ``10.1.2.0-24&fc00::-64``.

    Returns ``(None, None)`` when the key is not a subnet key.
    """
    match = _SUBNET_KEY.search(key)
    if match is None:
        return None, None
    v4_text, v4_len, v6_text, v6_len = match.groups()
    try:
        v4_addr = ipaddress.IPv4Address(v4_text)
    except ValueError:
        return None, None
    prefix_len = int(v4_len)
    if prefix_len >= 32:
        return None, None
    sn4 = IP4Net(IP4(int(v4_addr)), prefix_len)

    sn6 = None
    if v6_text:
        try:
            v6_addr = ipaddress.IPv6Address(v6_text)
        except ValueError:
            return None, None
        prefix_len = int(v6_len)
        if prefix_len >= 128:
            return None, None
        sn6 = IP6Net(IP6(int(v6_addr)), prefix_len)
    return sn4, sn6


def make_subnet_key(sn: IP4Net, sn6: IP6Net | None) -> str:
    key = sn.string_sep(".", "-")
    if sn6 is None or sn6.empty():
        return key
    return key + "&" + sn6.string_sep(":", "-")