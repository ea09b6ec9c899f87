"""Subnet arithmetic, network configuration, subnet leases and lease watching for overlay networks."""

__version__ = "0.1.0"