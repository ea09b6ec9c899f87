"""Long running watches over subnet leases that yield add and remove events."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Iterator
from typing import Any

from overlaynet.ip import IP4Net, IP6Net
from overlaynet.subnet import Event, EventType, Lease, Manager, WatchCancelled

log = logging.getLogger(__name__)

_RETRY_INTERVAL = 1.0


def _same_lease(held: Lease, other: Lease) -> bool:
    """Whether ``other`` refers to the lease ``held``, judged by ``held``'s stacks."""
    if held.enable_ipv4 and not held.enable_ipv6:
        return held.subnet == other.subnet
    if not held.enable_ipv4 and held.enable_ipv6:
        return held.ipv6_subnet == other.ipv6_subnet
    if held.enable_ipv4 and held.enable_ipv6:
        return held.subnet == other.subnet and held.ipv6_subnet == other.ipv6_subnet
    # Neither stack flagged: only the kube subnet manager produces these.
    return held.subnet == other.subnet


def _matches_in_reset(held: Lease, other: Lease) -> bool:
    """The match used when diffing a snapshot against the leases already known."""
    if held.enable_ipv4 and not held.enable_ipv6:
        if held.subnet == other.subnet or held.ipv6_subnet == other.ipv6_subnet:
            return True
        return False
    if held.enable_ipv4 and held.enable_ipv6:
        return held.subnet == other.subnet and held.ipv6_subnet == other.ipv6_subnet
    if not held.enable_ipv4 and not held.enable_ipv6:
        return held.subnet == other.subnet
    return False


class LeaseWatcher:
    """Keeps the set of known leases and turns changes into events.

    The watcher's own lease is never reported.
    """

    def __init__(self, own_lease: Lease | None = None) -> None:
        self.own_lease = own_lease
        self.leases: list[Lease] = []

    def _is_own(self, lease: Lease) -> bool:
        return self.own_lease is not None and _same_lease(lease, self.own_lease)

    def reset(self, leases: Iterable[Lease]) -> list[Event]:
        """Diff a full snapshot against the known leases and adopt the snapshot."""
        snapshot = list(leases)
        batch: list[Event] = []

        for new in snapshot:
            if self._is_own(new):
                continue
            for index, old in enumerate(self.leases):
                if _matches_in_reset(old, new):
                    del self.leases[index]
                    break
            else:
                batch.append(Event(EventType.ADDED, new))

        # Whatever is left was not in the snapshot and so has gone away.
        batch.extend(
            Event(EventType.REMOVED, old) for old in self.leases if not self._is_own(old)
        )

        self.leases = list(snapshot)
        return batch

    def update(self, events: Iterable[Event]) -> list[Event]:
        """Apply incremental events and return the ones worth reporting."""
        batch: list[Event] = []
        for event in events:
            if self._is_own(event.lease):
                continue
            if event.type is EventType.ADDED:
                batch.append(self._add(event.lease))
            elif event.type is EventType.REMOVED:
                batch.append(self._remove(event.lease))
        return batch

    def _add(self, lease: Lease) -> Event:
        for index, held in enumerate(self.leases):
            if _same_lease(held, lease):
                self.leases[index] = lease
                return Event(EventType.ADDED, lease)
        self.leases.append(lease)
        return Event(EventType.ADDED, lease)

    def _remove(self, lease: Lease) -> Event:
        for index, held in enumerate(self.leases):
            if _same_lease(held, lease):
                del self.leases[index]
                return Event(EventType.REMOVED, held)
        log.error(
            "Removed subnet (%s) and ipv6 subnet (%s) were not found",
            lease.subnet,
            lease.ipv6_subnet,
        )
        return Event(EventType.REMOVED, lease)


def watch_leases(manager: Manager, own_lease: Lease | None) -> Iterator[list[Event]]:
    """Yield batches of lease events until the manager's watch is cancelled.

    When the manager reports a snapshot instead of events, the snapshot is
    diffed against the leases seen so far. Other failures are logged and the
    watch is retried after a pause; an error carrying a ``cursor`` attribute
    moves the cursor on.
    """
    watcher = LeaseWatcher(own_lease)
    cursor: Any = None

    while True:
        try:
            result = manager.watch_leases(cursor)
        except WatchCancelled as exc:
            log.info("%s, stopping lease watch", exc)
            return
        except Exception as exc:  # noqa: BLE001 - every other failure is retried
            new_cursor = getattr(exc, "cursor", None)
            if new_cursor is not None:
                cursor = new_cursor
            log.error("Watch subnets: %s", exc)
            time.sleep(_RETRY_INTERVAL)
            continue

        cursor = result.cursor
        if result.events:
            batch = watcher.update(result.events)
        else:
            batch = watcher.reset(result.snapshot)
        if batch:
            yield batch


def watch_lease(manager: Manager, sn: IP4Net, sn6: IP6Net) -> Iterator[Event]:
    """Yield events for a single lease until the manager's watch is cancelled."""
    cursor: Any = None

    while True:
        try:
            result = manager.watch_lease(sn, sn6, cursor)
        except WatchCancelled as exc:
            log.info("%s, stopping lease watch", exc)
            return
        except Exception as exc:  # noqa: BLE001 - every other failure is retried
            log.error("Subnet watch failed: %s", exc)
            time.sleep(_RETRY_INTERVAL)
            continue

        if result.snapshot:
            yield Event(EventType.ADDED, result.snapshot[0])
        else:
            yield result.events[0]
        cursor = result.cursor