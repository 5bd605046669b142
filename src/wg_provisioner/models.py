# src/wg_provisioner/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Family(str, Enum):
    V4 = "ipv4"
    V6 = "ipv6"


@dataclass
class InterfaceRequest:
    name: str
    subnet4: str                    # ex "10.10.0.0/24"
    subnet6: Optional[str] = None   # ex "fd00:1234::/64", None = IPv6 désactivé

    @property
    def ipv6(self) -> bool:
        return self.subnet6 is not None


@dataclass
class InterfaceRecord:
    """
    Champs reconnus d'un artefact d'interface (<iface>.conf).
    Tout ce que le provisioning client sait de l'interface passe par ici.
    """
    name: str
    listen_port: int
    private_key: str
    public_ip4: str
    subnet4: str
    egress: str
    public_ip6: Optional[str] = None
    subnet6: Optional[str] = None
    allowed_ips: List[str] = field(default_factory=list)  # adresses déjà données aux peers
    peer_count: int = 0

    @property
    def ipv6(self) -> bool:
        return self.subnet6 is not None

    @property
    def endpoint(self) -> str:
        return f"{self.public_ip4}:{self.listen_port}"


@dataclass
class ProvisionedInterface:
    record: InterfaceRecord
    gateway4: str              # ex "10.10.0.1"
    gateway6: Optional[str] = None
    path: Optional[str] = None


@dataclass
class Client:
    name: str
    interface: str
    private_key: str
    public_key: str
    preshared_key: str
    address4: str               # ex "10.10.0.2"
    address6: Optional[str] = None
    path: Optional[str] = None

    @property
    def allowed_ips(self) -> List[str]:
        ips = [f"{self.address4}/32"]
        if self.address6:
            ips.append(f"{self.address6}/128")
        return ips
