# src/wg_provisioner/errors.py
from __future__ import annotations

from typing import Optional, Sequence


class ProvisionError(Exception):
    """Base de toutes les erreurs remontées à l'opérateur."""


class InvalidSubnet(ProvisionError, ValueError):
    pass


class InvalidFormat(ProvisionError, ValueError):
    pass


class IllegalName(ProvisionError, ValueError):
    pass


class PoolFileMissing(ProvisionError):
    pass


class PoolExhausted(ProvisionError):
    def __init__(self, pool_file, used_file) -> None:
        super().__init__(f"All public addresses of {pool_file} are allocated (ledger: {used_file})")
        self.pool_file = pool_file
        self.used_file = used_file


class ClientAddressExhausted(ProvisionError):
    def __init__(self, subnet: str, retryable: bool = False) -> None:
        msg = f"No client address left in subnet {subnet}"
        if retryable:
            msg += " (random search gave up, retry may succeed)"
        super().__init__(msg)
        self.subnet = subnet
        self.retryable = retryable


class PortExhausted(ProvisionError):
    pass


class InterfaceExists(ProvisionError):
    pass


class InterfaceNotFound(ProvisionError):
    pass


class NoDefaultRoute(ProvisionError):
    pass


class ServiceActivationFailed(ProvisionError):
    pass


class InvalidPublicAddress(ProvisionError):
    pass


class MissingPublicAddress(ProvisionError):
    pass


class MissingPort(ProvisionError):
    pass


class LockBusy(ProvisionError):
    pass


class CommandFailed(ProvisionError):
    """Un outil externe a terminé avec un code non nul."""

    def __init__(self, cmd: Sequence[str], returncode: int, stderr: Optional[str] = None) -> None:
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Command {' '.join(cmd)!r} failed with exit status {returncode}{detail}")
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
