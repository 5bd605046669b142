# src/wg_provisioner/subnet.py
from __future__ import annotations
import ipaddress
import re
from typing import Tuple

from .errors import InvalidFormat, InvalidSubnet
from .models import Family

_IPV4_CIDR = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+/[0-9]+$")


def _parse(subnet: str):
    return ipaddress.ip_interface(subnet)


def validate_subnet(subnet: str) -> Family:
    """
    Vérifie un sous-réseau saisi par l'opérateur et retourne sa famille.
    Les bits d'hôte sont tolérés ("10.10.0.5/24" est accepté).
    """
    if not subnet or subnet.startswith("-"):
        raise InvalidFormat(f"Subnet must not be empty or start with '-': {subnet!r}")

    if ":" in subnet:
        try:
            iface = _parse(subnet)
        except ValueError as exc:
            raise InvalidSubnet(f"Invalid IPv6 subnet {subnet!r}: {exc}") from exc
        if iface.version != 6 or "/" not in subnet:
            raise InvalidSubnet(f"Invalid IPv6 subnet {subnet!r}")
        return Family.V6

    if not _IPV4_CIDR.match(subnet):
        raise InvalidFormat(f"IPv4 subnet must look like x.x.x.x/x: {subnet!r}")
    try:
        _parse(subnet)
    except ValueError as exc:
        raise InvalidSubnet(f"Invalid IPv4 subnet {subnet!r}: {exc}") from exc
    return Family.V4


def usable_range(subnet4: str) -> Tuple[ipaddress.IPv4Address, ipaddress.IPv4Address]:
    """
    Premier et dernier hôte utilisables (réseau et broadcast exclus).
    Pour /31 et /32 il n'y a rien à exclure.
    """
    try:
        net = ipaddress.IPv4Network(subnet4, strict=False)
    except ValueError as exc:
        raise InvalidSubnet(f"Invalid IPv4 subnet {subnet4!r}: {exc}") from exc

    if net.num_addresses <= 2:
        return net.network_address, net.broadcast_address
    return net.network_address + 1, net.broadcast_address - 1


def gateway4(subnet4: str) -> str:
    # Par convention la passerelle est toujours le premier hôte utilisable
    first, _ = usable_range(subnet4)
    return str(first)


def compressed_address(subnet6: str) -> str:
    """Adresse canonique (sans préfixe) du bloc, utilisée comme passerelle IPv6."""
    try:
        iface = ipaddress.IPv6Interface(subnet6)
    except ValueError as exc:
        raise InvalidSubnet(f"Invalid IPv6 subnet {subnet6!r}: {exc}") from exc
    return iface.ip.compressed


def prefix_length(subnet: str) -> int:
    try:
        return _parse(subnet).network.prefixlen
    except ValueError as exc:
        raise InvalidSubnet(f"Invalid subnet {subnet!r}: {exc}") from exc
