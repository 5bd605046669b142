# src/wg_provisioner/__init__.py
"""Provisioning des interfaces WireGuard et de leurs peers sur un hôte."""

__version__ = "0.2.0"
