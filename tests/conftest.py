"""Fixtures partagées : répertoire de config temporaire et hôte factice."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from wg_provisioner.config import Settings
from wg_provisioner.errors import CommandFailed, NoDefaultRoute
from wg_provisioner.models import InterfaceRequest
from wg_provisioner.provision import ClientProvisioner, InterfaceProvisioner
from wg_provisioner.state import ArtifactStore


class FakeHost:
    """Remplace wg / systemctl / ip : aucune commande système n'est lancée."""

    def __init__(self, fail_enable=False, fail_reload=False, egress="eth0"):
        self.fail_enable = fail_enable
        self.fail_reload = fail_reload
        self.egress = egress
        self.enabled = []
        self.reloaded = []
        self._n = 0

    def generate_private_key(self):
        self._n += 1
        return f"priv{self._n}="

    def public_key(self, private_key):
        return f"pub-{private_key}"

    def generate_preshared_key(self):
        return "psk="

    def default_route_iface(self):
        if self.egress is None:
            raise NoDefaultRoute("Cannot detect default route (no 'ip route show default' output).")
        return self.egress

    def enable_service(self, interface):
        if self.fail_enable:
            raise CommandFailed(["systemctl", "enable", "--now", f"wg-quick@{interface}"], 1, "boom")
        self.enabled.append(interface)

    def reload_service(self, interface):
        if self.fail_reload:
            raise CommandFailed(["wg", "syncconf", interface, "/dev/stdin"], 1, "boom")
        self.reloaded.append(interface)

    def save_rules(self, rules_dir):
        return []


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    s = Settings(config_dir=tmp_path / "wireguard", rules_dir=tmp_path / "iptables")
    s.config_dir.mkdir()
    s.pool_file_v4.write_text("1.1.1.1\n1.1.1.2\n", encoding="utf-8")
    s.pool_file_v6.write_text("2001:db8::10\n2001:db8::11\n", encoding="utf-8")
    return s


@pytest.fixture
def store(settings: Settings) -> ArtifactStore:
    return ArtifactStore(settings.config_dir, settings.client_dir)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def iface_provisioner(settings, host, store) -> InterfaceProvisioner:
    return InterfaceProvisioner(settings, host=host, store=store, port_probe=lambda: set())


@pytest.fixture
def client_provisioner(settings, host, store) -> ClientProvisioner:
    return ClientProvisioner(settings, host=host, store=store, rng=random.Random(42))


@pytest.fixture
def wg1(iface_provisioner):
    """Interface wg1 IPv4 seule, sous-réseau 10.0.0.0/29."""
    return iface_provisioner.provision(InterfaceRequest(name="wg1", subnet4="10.0.0.0/29"))
