# overlaynet

Building blocks for an overlay network agent. Each host leases its own
subnet of a shared cluster network. This package does the subnet arithmetic,
validates the network configuration, and keeps track of leases and changes
to them. It has no dependencies outside the standard library.

## Modules

- `overlaynet.ip` defines the frozen value types `IP4`, `IP4Net`, `IP6` and
  `IP6Net`, which hold addresses as plain integers.
  - They offer `parse`, `mask`, `network`, `next`, `incremented`, `overlaps`,
    `contains`, `empty`, `to_cidr`, `string_sep` and `to_json`.
  - `IP4` and `IP6` also offer `is_private`. `IP4` adds `octets` and
    `network_order`.
  - Helper functions: `ipv6_mask`, `is_empty`, `ipv6_subnet_min`,
    `ipv6_subnet_max`, `check_ipv6_subnet` and `natively_little`.
- `overlaynet.config` holds `parse_config`, which reads the network
  configuration from JSON and returns a `Config`.
  - Member names are matched without regard to case.
  - IPv4 is enabled unless the configuration turns it off.
  - It fills in defaults for the subnet length and for the lowest and highest
    subnet. The default IPv4 subnet is /24, and for a network smaller than /22
    it is the network's prefix plus 2.
  - Without a `Backend` member the backend type is `udp`.
  - Bad input raises `ConfigError`.
- `overlaynet.subnet` defines the lease types.
  - `Lease` and `LeaseAttrs`; `LeaseAttrs` has `to_json` and `from_json`.
  - `Event`, `EventType` (`ADDED`, `REMOVED`) and `LeaseWatchResult`.
  - The abstract `Manager` interface.
  - The exceptions `LeaseTakenError`, `NoMoreTriesError` and `WatchCancelled`.
  - `parse_subnet_key` and `make_subnet_key` convert keys such as
    `10.12.13.0-24&fd00:12:13::-56`.
- `overlaynet.watch` provides `LeaseWatcher`, which turns snapshots and
  incremental events into batches of added and removed leases. It leaves out
  the host's own lease.
  - The generators `watch_leases(manager, own_lease)` and
    `watch_lease(manager, sn, sn6)` call a manager repeatedly.
  - A failed call is retried after a one-second pause.
  - The generators stop when the manager raises `WatchCancelled`.
- `overlaynet.local_manager` provides `LocalManager`, which allocates leases
  against a `Registry` you implement.
  - It reuses the lease already held for the host's public IP if that lease
    still fits the configuration.
  - Otherwise it reuses a previous subnet, or picks at random among up to 100
    free subnets.
  - A `KeyExistsError` from the registry leads to a retry. After 10 attempts
    it raises `NoMoreTriesError`.
  - Leases are granted for 24 hours.
  - Helpers: `is_subnet_config_compat`, `is_ipv6_subnet_config_compat` and
    `WatchCursor`.
- `overlaynet.kube` provides `KubeSubnetManager`, which takes leases from the
  pod CIDRs of cluster nodes through a `NodeClient` you implement.
  - `acquire_lease` writes the lease attributes to the node's annotations.
  - Node changes reach the manager through `handle_add_lease_event` and
    `handle_update_lease_event`. `watch_leases` then returns them.
  - `watch_leases` raises `WatchCancelled` when the manager's `cancel` event
    is set or its `watch_timeout` runs out.
  - `renew_lease` and `watch_lease` raise `UnimplementedError`.
  - `event_queue_depth` reads `EVENT_QUEUE_DEPTH`, with a default of 5000.
- `overlaynet.nodes` provides the `Node` record and `contains_cidr`.
  - `node_to_lease`, `lease_changed` and `is_subnet_managed` work from a node's
    annotations.
  - Bad node data raises `NodeLeaseError`.
- `overlaynet.annotations` provides `new_annotations(prefix)`, which builds
  the annotation names for a prefix such as `example.com/name`.
- `overlaynet.mac` provides `new_hardware_addr`, which returns a random
  six-byte MAC address that is locally administered and unicast.
- `overlaynet.routing` provides the `Route` value type. `Route.equal` compares
  destination and gateway and ignores the interface index.

## Example

```python
from overlaynet.config import parse_config
from overlaynet.subnet import parse_subnet_key, make_subnet_key

cfg = parse_config('{ "Network": "10.3.0.0/16" }')
print(cfg.subnet_len, cfg.subnet_min, cfg.subnet_max)   # 24 10.3.1.0 10.3.255.0

sn, sn6 = parse_subnet_key("10.12.13.0-24&fd00:12:13::-56")
assert make_subnet_key(sn, sn6) == "10.12.13.0-24&fd00:12:13::-56"
```

## What it does not do

This package is a library, not an agent. It does not include any of the
following:

- a command-line program or a daemon;
- a client for a key-value store or for a cluster API (you supply these as a
  `Registry` or a `NodeClient`);
- a node informer to feed `KubeSubnetManager`;
- code that configures network interfaces, routes or tunnel devices on the
  host.

## Tests

The tests use pytest and are in `tests/`. Install the `test` extra to get
pytest.