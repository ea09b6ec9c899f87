"""Random hardware address generation."""

from __future__ import annotations

import secrets


def new_hardware_addr() -> bytes:
    """Return a random six-byte MAC address that is locally administered and unicast."""
    try:
        addr = bytearray(secrets.token_bytes(6))
    except (OSError, NotImplementedError) as exc:
        raise OSError(f"could not generate random MAC address: {exc}") from exc
    addr[0] = (addr[0] & 0xFE) | 0x02
    return bytes(addr)