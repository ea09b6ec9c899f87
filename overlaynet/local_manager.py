"""Subnet leases handed out from a shared key-value registry."""

from __future__ import annotations

import logging
import random
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from overlaynet.config import Config, parse_config
from overlaynet.ip import IP4, IP4Net, IP6, IP6Net
from overlaynet.subnet import (
    Event,
    Lease,
    LeaseAttrs,
    LeaseWatchResult,
    Manager,
    NoMoreTriesError,
    WatchCancelled,
)

log = logging.getLogger(__name__)

RACE_RETRIES = 10
SUBNET_TTL = timedelta(hours=24)
_MAX_CANDIDATES = 100
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_CURSOR_TEXT = re.compile(r"[+-]?[0-9]+")

_rnd = random.Random(time.time_ns())


class TryAgainError(Exception):
    """Another node took the chosen subnet first; the attempt should be repeated."""

    def __init__(self, message: str = "try again") -> None:
        super().__init__(message)


class KeyExistsError(Exception):
    """The registry already holds the key that was to be created."""

    def __init__(self, message: str = "subnet already exists") -> None:
        super().__init__(message)


class IndexTooSmallError(Exception):
    """The watch index lies before the registry's retained history."""

    def __init__(self, message: str = "index outside history window") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class WatchCursor:
    """The registry revision a watch continues from."""

    index: int

    def __str__(self) -> str:
        return str(self.index)


class Registry(ABC):
    """Storage for the network configuration and the subnet leases."""

    @abstractmethod
    def get_network_config(self) -> str:
        """Return the network configuration as JSON text."""

    @abstractmethod
    def get_subnets(self) -> tuple[list[Lease], int]:
        """Return all leases and the revision they were read at."""

    @abstractmethod
    def get_subnet(self, sn: IP4Net, sn6: IP6Net) -> tuple[Lease, int]:
        """Return one lease and the revision it was read at."""

    @abstractmethod
    def create_subnet(
        self, sn: IP4Net, sn6: IP6Net, attrs: LeaseAttrs, ttl: timedelta
    ) -> datetime | None:
        """Create a lease; raise KeyExistsError if it is already taken."""

    @abstractmethod
    def update_subnet(
        self, sn: IP4Net, sn6: IP6Net, attrs: LeaseAttrs, ttl: timedelta, asof: int
    ) -> datetime | None:
        """Write a lease's attributes and return its new expiration."""

    @abstractmethod
    def delete_subnet(self, sn: IP4Net, sn6: IP6Net) -> None:
        """Remove a lease."""

    @abstractmethod
    def watch_subnets(self, since: int) -> tuple[Event, int]:
        """Wait for the next change to any lease after revision ``since``."""

    @abstractmethod
    def watch_subnet(self, since: int, sn: IP4Net, sn6: IP6Net) -> tuple[Event, int]:
        """Wait for the next change to one lease after revision ``since``."""


def _rand_int(lo: int, hi: int) -> int:
    return _rnd.randrange(lo, hi)


def _next_index(cursor: Any) -> int:
    if isinstance(cursor, WatchCursor):
        return cursor.index
    if isinstance(cursor, str):
        if not _CURSOR_TEXT.fullmatch(cursor):
            raise ValueError(f"failed to parse cursor: invalid syntax {cursor!r}")
        value = int(cursor)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f"failed to parse cursor: value out of range {cursor!r}")
        return value
    raise TypeError("internal error: watch cursor is of unknown type")


def is_subnet_config_compat(config: Config, sn: IP4Net) -> bool:
    """Whether an IPv4 subnet lies in the configured range with the configured length."""
    if sn.ip < config.subnet_min or sn.ip > config.subnet_max:
        return False
    return sn.prefix_len == config.subnet_len


def is_ipv6_subnet_config_compat(config: Config, sn6: IP6Net) -> bool:
    """Whether an IPv6 subnet fits the configuration; empty is right when IPv6 is off."""
    if not config.enable_ipv6:
        return sn6.empty()
    if sn6.empty() or config.ipv6_subnet_min is None or config.ipv6_subnet_max is None:
        return False
    if sn6.ip < config.ipv6_subnet_min or sn6.ip > config.ipv6_subnet_max:
        return False
    return sn6.prefix_len == config.ipv6_subnet_len


class LocalManager(Manager):
    """A subnet manager that allocates leases itself, coordinating through a registry."""

    def __init__(
        self,
        registry: Registry,
        previous_subnet: IP4Net = IP4Net(),
        previous_ipv6_subnet: IP6Net = IP6Net(),
    ) -> None:
        self.registry = registry
        self.previous_subnet = previous_subnet
        self.previous_ipv6_subnet = previous_ipv6_subnet

    def get_network_config(self) -> Config:
        return parse_config(self.registry.get_network_config())

    def acquire_lease(self, attrs: LeaseAttrs) -> Lease:
        config = self.get_network_config()
        for _ in range(RACE_RETRIES):
            try:
                return self._try_acquire_lease(config, attrs.public_ip, attrs)
            except TryAgainError:
                continue
        raise NoMoreTriesError("Max retries reached trying to acquire a subnet")

    def _try_acquire_lease(self, config: Config, ext_addr: IP4, attrs: LeaseAttrs) -> Lease:
        leases, _ = self.registry.get_subnets()

        # Reuse the subnet already leased to our address, if any.
        held = next((l for l in leases if l.attrs.public_ip == ext_addr), None)
        if held is not None:
            if is_subnet_config_compat(config, held.subnet) and is_ipv6_subnet_config_compat(
                config, held.ipv6_subnet
            ):
                log.info(
                    "Found lease (ip: %s ipv6: %s) for current IP (%s), reusing",
                    held.subnet,
                    held.ipv6_subnet,
                    ext_addr,
                )
                # A lease without an expiration is a reservation and keeps no TTL.
                ttl = timedelta(0) if held.expiration is None else SUBNET_TTL
                expiration = self.registry.update_subnet(
                    held.subnet, held.ipv6_subnet, attrs, ttl, 0
                )
                return replace(held, attrs=attrs, expiration=expiration)
            log.info(
                "Found lease (%s) for current IP (%s) but not compatible with current config, deleting",
                held,
                ext_addr,
            )
            self.registry.delete_subnet(held.subnet, held.ipv6_subnet)

        sn, sn6 = IP4Net(), IP6Net()
        if not self.previous_subnet.empty():
            if not any(self.previous_subnet == l.subnet for l in leases):
                if is_subnet_config_compat(
                    config, self.previous_subnet
                ) and is_ipv6_subnet_config_compat(config, self.previous_ipv6_subnet):
                    log.info("Found previously leased subnet (%s), reusing", self.previous_subnet)
                    sn, sn6 = self.previous_subnet, self.previous_ipv6_subnet
                else:
                    log.error(
                        "Found previously leased subnet (%s) that is not compatible "
                        "with the network config, ignoring",
                        self.previous_subnet,
                    )

        if sn.empty():
            sn, sn6 = self._allocate_subnet(config, leases)

        try:
            expiration = self.registry.create_subnet(sn, sn6, attrs, SUBNET_TTL)
        except KeyExistsError:
            raise TryAgainError() from None
        log.info("Allocated lease (ip: %s ipv6: %s) to current node (%s)", sn, sn6, ext_addr)
        return Lease(
            enable_ipv4=True,
            enable_ipv6=not sn6.empty(),
            subnet=sn,
            ipv6_subnet=sn6,
            attrs=attrs,
            expiration=expiration,
        )

    def _allocate_subnet(self, config: Config, leases: list[Lease]) -> tuple[IP4Net, IP6Net]:
        log.info("Picking subnet in range %s ... %s", config.subnet_min, config.subnet_max)

        available: list[IP4] = []
        sn = IP4Net(config.subnet_min, config.subnet_len)
        while sn.ip <= config.subnet_max and len(available) < _MAX_CANDIDATES:
            if not any(sn.overlaps(l.subnet) for l in leases):
                available.append(sn.ip)
            following = sn.next()
            if following.ip <= sn.ip:
                break
            sn = following

        available6: list[IP6] = []
        if config.enable_ipv6:
            log.info(
                "Picking ipv6 subnet in range %s ... %s",
                config.ipv6_subnet_min,
                config.ipv6_subnet_max,
            )
            taken6 = [l.ipv6_subnet for l in leases if not l.ipv6_subnet.empty()]
            sn6 = IP6Net(config.ipv6_subnet_min, config.ipv6_subnet_len)
            while sn6.ip <= config.ipv6_subnet_max and len(available6) < _MAX_CANDIDATES:
                if not any(sn6.overlaps(taken) for taken in taken6):
                    available6.append(sn6.ip)
                try:
                    sn6 = sn6.next()
                except ValueError:
                    break

        if not available or (config.enable_ipv6 and not available6):
            raise RuntimeError("out of subnets")

        chosen = IP4Net(available[_rand_int(0, len(available))], config.subnet_len)
        if not config.enable_ipv6:
            return chosen, IP6Net()
        chosen6 = IP6Net(available6[_rand_int(0, len(available6))], config.ipv6_subnet_len)
        return chosen, chosen6

    def renew_lease(self, lease: Lease) -> None:
        lease.expiration = self.registry.update_subnet(
            lease.subnet, lease.ipv6_subnet, lease.attrs, SUBNET_TTL, 0
        )

    def _lease_watch_reset(self, sn: IP4Net, sn6: IP6Net) -> LeaseWatchResult:
        lease, index = self.registry.get_subnet(sn, sn6)
        return LeaseWatchResult(snapshot=[lease], cursor=WatchCursor(index))

    def watch_lease(self, sn: IP4Net, sn6: IP6Net, cursor: Any) -> LeaseWatchResult:
        if cursor is None:
            return self._lease_watch_reset(sn, sn6)
        since = _next_index(cursor)
        try:
            event, index = self.registry.watch_subnet(since, sn, sn6)
        except IndexTooSmallError:
            log.warning("Watch of subnet leases failed because index outside history window")
            return self._lease_watch_reset(sn, sn6)
        return LeaseWatchResult(events=[event], cursor=WatchCursor(index))

    def _leases_watch_reset(self) -> LeaseWatchResult:
        try:
            leases, index = self.registry.get_subnets()
        except WatchCancelled:
            raise
        except Exception as exc:
            raise RuntimeError(f"failed to retrieve subnet leases: {exc}") from exc
        return LeaseWatchResult(snapshot=leases, cursor=WatchCursor(index))

    def watch_leases(self, cursor: Any) -> LeaseWatchResult:
        """Return the next lease change, or a snapshot when there is no cursor.

        A failure that carries a non-zero ``index`` attribute gets a ``cursor``
        attribute so a watcher can move on past it.
        """
        if cursor is None:
            return self._leases_watch_reset()
        since = _next_index(cursor)
        try:
            event, index = self.registry.watch_subnets(since)
        except IndexTooSmallError:
            log.warning("Watch of subnet leases failed because index outside history window")
            return self._leases_watch_reset()
        except Exception as exc:
            index = getattr(exc, "index", 0)
            if index:
                exc.cursor = WatchCursor(index)  # type: ignore[attr-defined]
            raise
        # Only some backends handle dual stack; leases from here are always IPv4.
        event = Event(event.type, replace(event.lease, enable_ipv4=True))
        return LeaseWatchResult(events=[event], cursor=WatchCursor(index))

    def name(self) -> str:
        previous = "None" if self.previous_subnet.empty() else str(self.previous_subnet)
        return f"Etcd Local Manager with Previous Subnet: {previous}"