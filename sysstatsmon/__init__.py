"""Collect CPU, memory, disk, network, host and OS-feature metrics for a node."""

__version__ = "0.1.0"