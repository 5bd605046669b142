# src/wg_provisioner/ports.py
from __future__ import annotations

from typing import Callable, Optional, Set

import psutil

from .errors import PortExhausted
from .logging_utils import get_logger

LOGGER = get_logger(__name__)

MAX_PORT = 65535


def listening_udp_ports() -> Set[int]:
    """Ports UDP liés localement (IPv4 et IPv6), équivalent de `ss -uln`."""
    ports = set()
    for conn in psutil.net_connections(kind="udp"):
        if conn.laddr and conn.laddr.port:
            ports.add(conn.laddr.port)
    return ports


def next_free_port(
    base: int,
    probe: Optional[Callable[[], Set[int]]] = None,
) -> int:
    """Premier port UDP libre >= base. PortExhausted au-delà de 65535."""
    used = (probe or listening_udp_ports)()
    port = base
    while port <= MAX_PORT:
        if port not in used:
            LOGGER.info("Selected listen port %d", port)
            return port
        LOGGER.debug("Port %d already bound", port)
        port += 1
    raise PortExhausted(f"No free UDP port between {base} and {MAX_PORT}")
