"""The network configuration and its validation."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

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
)


class ConfigError(ValueError):
    """The network configuration is malformed or inconsistent."""


@dataclass
class Config:
    enable_ipv4: bool = True
    enable_ipv6: bool = False
    network: IP4Net = IP4Net()
    ipv6_network: IP6Net = IP6Net()
    subnet_min: IP4 = IP4()
    subnet_max: IP4 = IP4()
    ipv6_subnet_min: IP6 | None = None
    ipv6_subnet_max: IP6 | None = None
    subnet_len: int = 0
    ipv6_subnet_len: int = 0
    backend_type: str = ""
    backend: Any = None


def _bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"cannot decode {key}: expected a boolean")
    return value


def _uint(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"cannot decode {key}: expected an unsigned integer")
    return value


def _parsed(key: str, value: Any, parse: Any) -> Any:
    if not isinstance(value, str):
        raise ConfigError(f"cannot decode {key}: expected a string")
    try:
        return parse(value)
    except ValueError as exc:
        raise ConfigError(f"cannot decode {key}: {exc}") from exc


def _backend_type(backend: Any) -> str:
    if backend is None:
        return ""
    if not isinstance(backend, dict):
        raise ConfigError("error decoding Backend property of config: expected an object")
    found: Any = None
    for key, value in backend.items():
        if key.lower() == "type":
            found = value
    if found is None:
        return ""
    if not isinstance(found, str):
        raise ConfigError("error decoding Backend property of config: Type must be a string")
    return found


def _load(text: str) -> tuple[Config, bool]:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(str(exc)) from exc
    if not isinstance(doc, dict):
        raise ConfigError("network config must be a JSON object")

    cfg = Config()
    has_backend = False
    for key, value in doc.items():
        name = key.lower()
        if value is None and name not in ("ipv6subnetmin", "ipv6subnetmax", "backend"):
            if name in ("network", "ipv6network", "subnetmin", "subnetmax"):
                raise ConfigError(f"cannot decode {key}: null is not an address")
            continue
        match name:
            case "enableipv4":
                cfg.enable_ipv4 = _bool(key, value)
            case "enableipv6":
                cfg.enable_ipv6 = _bool(key, value)
            case "network":
                cfg.network = _parsed(key, value, IP4Net.parse)
            case "ipv6network":
                cfg.ipv6_network = _parsed(key, value, IP6Net.parse)
            case "subnetmin":
                cfg.subnet_min = _parsed(key, value, IP4.parse)
            case "subnetmax":
                cfg.subnet_max = _parsed(key, value, IP4.parse)
            case "ipv6subnetmin":
                cfg.ipv6_subnet_min = None if value is None else _parsed(key, value, IP6.parse)
            case "ipv6subnetmax":
                cfg.ipv6_subnet_max = None if value is None else _parsed(key, value, IP6.parse)
            case "subnetlen":
                cfg.subnet_len = _uint(key, value)
            case "ipv6subnetlen":
                cfg.ipv6_subnet_len = _uint(key, value)
            case "backend":
                cfg.backend = value
                has_backend = True
    return cfg, has_backend


def _validate_ipv4(cfg: Config) -> None:
    if cfg.subnet_len > 0:
        # Room for a tunnel and a bridge device on each host.
        if cfg.subnet_len > 30:
            raise ConfigError("SubnetLen must be less than /31")
        # The first subnet is never used, so at least four are needed.
        if cfg.subnet_len < cfg.network.prefix_len + 2:
            raise ConfigError("Network must be able to accommodate at least four subnets")
    elif cfg.network.prefix_len > 28:
        raise ConfigError("Network is too small. Minimum useful network prefix is /28")
    elif cfg.network.prefix_len <= 22:
        cfg.subnet_len = 24
    else:
        cfg.subnet_len = cfg.network.prefix_len + 2

    subnet_size = 1 << (32 - cfg.subnet_len)

    if cfg.subnet_min.value == 0:
        # Skip the first subnet: its address is the network address.
        cfg.subnet_min = cfg.network.ip + subnet_size
    elif not cfg.network.contains(cfg.subnet_min):
        raise ConfigError("SubnetMin is not in the range of the Network")

    if cfg.subnet_max.value == 0:
        cfg.subnet_max = cfg.network.next().ip - subnet_size
    elif not cfg.network.contains(cfg.subnet_max):
        raise ConfigError("SubnetMax is not in the range of the Network")

    mask = (0xFFFFFFFF << (32 - cfg.subnet_len)) & 0xFFFFFFFF
    if cfg.subnet_min != cfg.subnet_min & mask:
        raise ConfigError(f"SubnetMin is not on a SubnetLen boundary: {cfg.subnet_min}")
    if cfg.subnet_max != cfg.subnet_max & mask:
        raise ConfigError(f"SubnetMax is not on a SubnetLen boundary: {cfg.subnet_max}")


def _validate_ipv6(cfg: Config) -> None:
    if cfg.ipv6_subnet_len > 0:
        if cfg.ipv6_subnet_len > 126:
            raise ConfigError("SubnetLen must be less than /127")
        if cfg.ipv6_subnet_len < cfg.ipv6_network.prefix_len + 2:
            raise ConfigError("Network must be able to accommodate at least four subnets")
    elif cfg.ipv6_network.prefix_len > 124:
        raise ConfigError("IPv6Network is too small. Minimum useful network prefix is /124")
    elif cfg.ipv6_network.prefix_len <= 62:
        cfg.ipv6_subnet_len = 64
    else:
        cfg.ipv6_subnet_len = cfg.ipv6_network.prefix_len + 2

    subnet_size = 1 << (128 - cfg.ipv6_subnet_len)

    try:
        if is_empty(cfg.ipv6_subnet_min):
            cfg.ipv6_subnet_min = ipv6_subnet_min(cfg.ipv6_network.ip, subnet_size)
        elif not cfg.ipv6_network.contains(cfg.ipv6_subnet_min):
            raise ConfigError("IPv6SubnetMin is not in the range of the IPv6Network")

        if is_empty(cfg.ipv6_subnet_max):
            cfg.ipv6_subnet_max = ipv6_subnet_max(cfg.ipv6_network.next().ip, subnet_size)
        elif not cfg.ipv6_network.contains(cfg.ipv6_subnet_max):
            raise ConfigError("IPv6SubnetMax is not in the range of the IPv6Network")
    except ConfigError:
        raise
    except ValueError as exc:
        raise ConfigError(f"IPv6Network does not leave room for subnets: {exc}") from exc

    mask = ipv6_mask(cfg.ipv6_subnet_len)
    if not check_ipv6_subnet(cfg.ipv6_subnet_min, mask):
        raise ConfigError(f"IPv6SubnetMin is not on a SubnetLen boundary: {cfg.ipv6_subnet_min}")
    if not check_ipv6_subnet(cfg.ipv6_subnet_max, mask):
        raise ConfigError(f"IPv6SubnetMax is not on a SubnetLen boundary: {cfg.ipv6_subnet_max}")


def parse_config(text: str) -> Config:
    """Parse a JSON network configuration and fill in defaults.

    Member names are matched without regard to case. IPv4 is enabled unless
    the configuration turns it off. Without a Backend the backend type is udp.
    """
    cfg, has_backend = _load(text)
    if cfg.enable_ipv4:
        _validate_ipv4(cfg)
    if cfg.enable_ipv6:
        _validate_ipv6(cfg)
    cfg.backend_type = _backend_type(cfg.backend) if has_backend else "udp"
    return cfg