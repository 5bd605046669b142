# src/wg_provisioner/provision.py
from __future__ import annotations

import random
from typing import Callable, Dict, Optional, Set

from . import ipam, ports
from .config import Settings
from .errors import CommandFailed, InvalidFormat, ServiceActivationFailed
from .logging_utils import get_logger
from .models import Client, Family, InterfaceRecord, InterfaceRequest, ProvisionedInterface
from .pool import PoolStore, ProvisionLock
from .ports import next_free_port
from .saga import Saga, Step
from .state import ArtifactStore
from .subnet import compressed_address, gateway4, validate_subnet
from .wireguard import Host, render_client_conf, render_interface_conf, render_peer_block

LOGGER = get_logger(__name__)


def default_pools(settings: Settings) -> Dict[Family, PoolStore]:
    return {
        Family.V4: PoolStore(settings.pool_file_v4, settings.used_file_v4),
        Family.V6: PoolStore(settings.pool_file_v6, settings.used_file_v6),
    }


def check_subnet(subnet: str, family: Family) -> None:
    found = validate_subnet(subnet)
    if found is not family:
        raise InvalidFormat(f"Expected an {family.value} subnet, got {subnet!r}")


# ---------- Interfaces ----------

class InterfaceProvisioner:
    """
    Allocation des ressources d'une nouvelle interface, écriture de
    <iface>.conf puis activation de wg-quick@<iface>. Tout échec après une
    allocation défait ce qui a été fait (adresses rendues, fichier supprimé).
    """

    def __init__(
        self,
        settings: Settings,
        host: Optional[Host] = None,
        store: Optional[ArtifactStore] = None,
        pools: Optional[Dict[Family, PoolStore]] = None,
        port_probe: Optional[Callable[[], Set[int]]] = None,
    ) -> None:
        self.settings = settings
        self.host = host or Host()
        self.store = store or ArtifactStore(settings.config_dir, settings.client_dir)
        self.pools = pools or default_pools(settings)
        self.port_probe = port_probe

    def check_request(self, request: InterfaceRequest) -> None:
        check_subnet(request.subnet4, Family.V4)
        if request.ipv6:
            check_subnet(request.subnet6, Family.V6)
        self.store.check_new_interface_name(request.name)

    def _allocate(self, family: Family) -> str:
        pool = self.pools[family]
        ip = pool.allocate()
        pool.commit(ip)
        LOGGER.info("Allocated public %s address %s", family.value, ip)
        return ip

    def _used_ports(self) -> Set[int]:
        # ports liés en direct + ports des interfaces existantes, même arrêtées
        live = (self.port_probe or ports.listening_udp_ports)()
        return set(live) | self.store.listen_ports()

    def _activate(self, name: str) -> None:
        try:
            self.host.enable_service(name)
        except CommandFailed as exc:
            raise ServiceActivationFailed(f"wg-quick@{name} failed to start: {exc}") from exc

    def provision(self, request: InterfaceRequest) -> ProvisionedInterface:
        self.check_request(request)

        pool4 = self.pools[Family.V4]
        pool6 = self.pools[Family.V6]
        pool4.ensure()
        if request.ipv6:
            pool6.ensure()

        with ProvisionLock(self.settings.config_dir), Saga(f"create {request.name}") as saga:
            # re-vérifié sous verrou
            self.store.check_new_interface_name(request.name)

            public4 = saga.run(Step("allocate public IPv4", lambda: self._allocate(Family.V4), pool4.rollback))
            public6 = None
            if request.ipv6:
                public6 = saga.run(Step("allocate public IPv6", lambda: self._allocate(Family.V6), pool6.rollback))

            gw4 = gateway4(request.subnet4)
            gw6 = compressed_address(request.subnet6) if request.ipv6 else None
            port = next_free_port(self.settings.base_port, self._used_ports)
            private_key = self.host.generate_private_key()
            egress = self.host.default_route_iface()

            iface = ProvisionedInterface(
                record=InterfaceRecord(
                    name=request.name,
                    listen_port=port,
                    private_key=private_key,
                    public_ip4=public4,
                    subnet4=request.subnet4,
                    egress=egress,
                    public_ip6=public6,
                    subnet6=request.subnet6,
                ),
                gateway4=gw4,
                gateway6=gw6,
            )

            path = saga.run(Step(
                "write interface artifact",
                lambda: self.store.write_interface(request.name, render_interface_conf(iface)),
                lambda _: self.store.delete_interface(request.name),
            ))
            iface.path = str(path)

            saga.run(Step("activate service", lambda: self._activate(request.name)))

        LOGGER.info("Interface %s created (port %d, public %s)", request.name, port, public4)
        return iface


# ---------- Clients ----------

class ClientProvisioner:
    """Ajout d'un peer à une interface existante, d'après son fichier .conf."""

    def __init__(
        self,
        settings: Settings,
        host: Optional[Host] = None,
        store: Optional[ArtifactStore] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings
        self.host = host or Host()
        self.store = store or ArtifactStore(settings.config_dir, settings.client_dir)
        self.rng = rng

    def provision(self, interface: str, name: Optional[str] = None) -> Client:
        with ProvisionLock(self.settings.config_dir):
            # relu à chaque appel : jamais d'état en cache
            record = self.store.load(interface)

            address4 = ipam.allocate_ip4(record.subnet4, record.allowed_ips)
            address6 = None
            if record.ipv6:
                address6 = ipam.allocate_ip6(
                    record.subnet6,
                    record.allowed_ips,
                    attempts=self.settings.v6_attempts,
                    rng=self.rng,
                )

            name = name or self.store.default_client_name(interface)
            self.store.check_new_client_name(interface, name)

            private_key = self.host.generate_private_key()
            client = Client(
                name=name,
                interface=interface,
                private_key=private_key,
                public_key=self.host.public_key(private_key),
                preshared_key=self.host.generate_preshared_key(),
                address4=address4,
                address6=address6,
            )
            server_public_key = self.host.public_key(record.private_key)

            with Saga(f"add {name} to {interface}") as saga:
                saga.run(Step(
                    "append peer block",
                    lambda: self.store.append_peer(interface, render_peer_block(client)),
                    lambda size: self.store.truncate_interface(interface, size),
                ))
                conf = render_client_conf(
                    client,
                    record,
                    server_public_key,
                    dns=self.settings.client_dns,
                    keepalive=self.settings.keepalive,
                )
                path = saga.run(Step(
                    "write client artifact",
                    lambda: self.store.write_client(interface, name, conf),
                    lambda _: self.store.delete_client(interface, name),
                ))
                client.path = str(path)
                saga.run(Step("reload service", lambda: self.host.reload_service(interface)))

        LOGGER.info("Client %s added to %s (%s)", name, interface, ", ".join(client.allowed_ips))
        return client
