# src/wg_provisioner/ipam.py
from __future__ import annotations
import ipaddress
import random
from typing import Iterable, Optional, Set, Union

from .errors import ClientAddressExhausted, InvalidSubnet
from .logging_utils import get_logger
from .subnet import compressed_address, usable_range

LOGGER = get_logger(__name__)

DEFAULT_V6_ATTEMPTS = 10
V6_SUFFIX_BITS = 32

_sysrandom = random.SystemRandom()


def existing_addresses(allowed_ips: Iterable[str]) -> Set[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    """
    Adresses déjà attribuées, à partir des valeurs AllowedIPs
    ("10.8.0.2/32", "fd00::2/128", ...). Les valeurs illisibles sont ignorées.
    """
    used = set()
    for entry in allowed_ips:
        ip_str = entry.strip().split("/")[0]
        if not ip_str:
            continue
        try:
            used.add(ipaddress.ip_address(ip_str))
        except ValueError:
            LOGGER.debug("Ignoring unparsable AllowedIPs entry %r", entry)
    return used


def allocate_ip4(subnet4: str, existing: Iterable[str]) -> str:
    """
    Plus petite adresse libre dans ]passerelle, dernier hôte].
    La passerelle (premier hôte) n'est jamais proposée.
    """
    first, last = usable_range(subnet4)
    used = existing_addresses(existing)

    candidate = first + 1
    while candidate <= last:
        if candidate not in used:
            return str(candidate)
        candidate += 1

    raise ClientAddressExhausted(subnet4)


def allocate_ip6(
    subnet6: str,
    existing: Iterable[str],
    attempts: int = DEFAULT_V6_ATTEMPTS,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Suffixe aléatoire (32 bits max) ajouté au préfixe du bloc.
    Recherche bornée : un échec n'implique pas que le bloc soit plein.
    """
    rng = rng or _sysrandom
    try:
        net = ipaddress.IPv6Network(subnet6, strict=False)
    except ValueError as exc:
        raise InvalidSubnet(f"Invalid IPv6 subnet {subnet6!r}: {exc}") from exc

    bits = min(V6_SUFFIX_BITS, net.max_prefixlen - net.prefixlen)
    used = existing_addresses(existing)
    used.add(ipaddress.IPv6Address(compressed_address(subnet6)))

    if bits == 0:
        raise ClientAddressExhausted(subnet6)

    for _ in range(attempts):
        suffix = rng.getrandbits(bits)
        if suffix == 0:
            continue
        candidate = net.network_address + suffix
        if candidate in used:
            LOGGER.debug("IPv6 candidate %s already taken", candidate)
            continue
        return candidate.compressed

    raise ClientAddressExhausted(subnet6, retryable=True)


def allocate_client_ip(subnet: str, existing: Iterable[str], **kwargs) -> str:
    if ":" in subnet:
        return allocate_ip6(subnet, existing, **kwargs)
    return allocate_ip4(subnet, existing)
