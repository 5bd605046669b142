# src/wg_provisioner/wireguard.py
from __future__ import annotations
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from . import firewall
from .errors import (
    CommandFailed,
    InvalidPublicAddress,
    MissingPort,
    MissingPublicAddress,
)
from .logging_utils import get_logger
from .models import Client, Family, InterfaceRecord, ProvisionedInterface
from .subnet import prefix_length

LOGGER = get_logger(__name__)


# ---------- Commandes système ----------

def _which(tool: str) -> str:
    path = shutil.which(tool)
    if path is None:
        raise CommandFailed([tool], 127, f"'{tool}' not found in PATH")
    return path


def run_cmd(cmd: Sequence[str], input: Optional[str] = None) -> str:
    """Lance cmd, retourne stdout. CommandFailed si code de retour non nul."""
    _which(cmd[0])
    LOGGER.debug("Running %s", " ".join(cmd))
    proc = subprocess.run(list(cmd), input=input, capture_output=True, text=True)
    if proc.returncode != 0:
        raise CommandFailed(cmd, proc.returncode, proc.stderr)
    return proc.stdout


# ---------- Génération de clés ----------

def generate_private_key() -> str:
    return run_cmd(["wg", "genkey"]).strip()


def public_key(private_key: str) -> str:
    # pubkey lit la clé privée sur stdin
    return run_cmd(["wg", "pubkey"], input=private_key + "\n").strip()


def generate_keypair() -> tuple[str, str]:
    priv = generate_private_key()
    return priv, public_key(priv)


def generate_preshared_key() -> str:
    return run_cmd(["wg", "genpsk"]).strip()


# ---------- Rendu des configs ----------

def render_interface_conf(iface: ProvisionedInterface) -> str:
    r = iface.record

    address = f"{iface.gateway4}/{prefix_length(r.subnet4)}"
    if r.ipv6 and iface.gateway6:
        address += f", {iface.gateway6}/{prefix_length(r.subnet6)}"

    lines = [
        "[Interface]",
        f"Address = {address}",
        f"PrivateKey = {r.private_key}",
        f"ListenPort = {r.listen_port}",
        "",
        "# IPv4 NAT",
    ]
    up, down = firewall.snat_rules(Family.V4, r.subnet4, r.egress, r.public_ip4)
    lines += [f"PostUp = {up}", f"PostDown = {down}"]

    if r.ipv6:
        up, down = firewall.snat_rules(Family.V6, r.subnet6, r.egress, r.public_ip6)
        lines += ["", "# IPv6 NAT", f"PostUp = {up}", f"PostDown = {down}"]

    return "\n".join(lines) + "\n"


def render_peer_block(client: Client) -> str:
    lines = [
        "",
        "[Peer]",
        f"# {client.name}",
        f"PublicKey = {client.public_key}",
        f"PresharedKey = {client.preshared_key}",
        f"AllowedIPs = {', '.join(client.allowed_ips)}",
    ]
    return "\n".join(lines) + "\n"


def render_client_conf(
    client: Client,
    record: InterfaceRecord,
    server_public_key: str,
    dns: Optional[List[str]] = None,
    keepalive: int = 25,
) -> str:
    lines = [
        "[Interface]",
        f"PrivateKey = {client.private_key}",
        f"Address = {client.address4}/32",
    ]
    if client.address6:
        lines.append(f"Address = {client.address6}/128")
    if dns:
        lines.append(f"DNS = {', '.join(dns)}")

    routes = "0.0.0.0/0, ::/0" if client.address6 else "0.0.0.0/0"
    lines += [
        "",
        "[Peer]",
        f"PublicKey = {server_public_key}",
        f"PresharedKey = {client.preshared_key}",
        f"Endpoint = {record.endpoint}",
        f"AllowedIPs = {routes}",
        f"PersistentKeepalive = {keepalive}",
    ]
    return "\n".join(lines) + "\n"


# ---------- Relecture d'un artefact ----------

_SNAT_UP = re.compile(
    r"^PostUp\s*=\s*(?P<tool>iptables|ip6tables) -t nat -A POSTROUTING"
    r" -s (?P<subnet>\S+) -o (?P<egress>\S+) -j SNAT --to-source (?P<public>\S+)\s*$"
)
_DOTTED_QUAD = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+$")


def _value(line: str) -> str:
    return line.split("=", 1)[1].strip()


def parse_interface_conf(name: str, text: str) -> InterfaceRecord:
    """
    Reconstruit l'état d'une interface depuis son fichier .conf.
    Seules les lignes écrites par render_interface_conf / render_peer_block
    sont reconnues.
    """
    port = None
    private_key = ""
    in_interface = False
    rules = {}
    allowed: List[str] = []
    peers = 0

    for raw in text.splitlines():
        line = raw.strip()
        if line == "[Interface]":
            in_interface = True
            continue
        if line == "[Peer]":
            in_interface = False
            peers += 1
            continue

        if line.startswith("AllowedIPs") and "=" in line and not in_interface:
            allowed += [a.strip() for a in _value(line).split(",") if a.strip()]
        elif not in_interface:
            continue
        elif line.startswith("ListenPort") and "=" in line:
            try:
                port = int(_value(line))
            except ValueError:
                port = None
        elif line.startswith("PrivateKey") and "=" in line:
            private_key = _value(line)
        else:
            m = _SNAT_UP.match(line)
            if m and m.group("tool") not in rules:
                rules[m.group("tool")] = m

    v4 = rules.get(firewall.TOOLS[Family.V4])
    v6 = rules.get(firewall.TOOLS[Family.V6])

    if v4 is None and v6 is None:
        raise MissingPublicAddress(f"No public address found in interface '{name}'")
    public_ip4 = v4.group("public") if v4 else ""
    if not _DOTTED_QUAD.match(public_ip4):
        raise InvalidPublicAddress(f"Invalid public IPv4 address in interface '{name}': {public_ip4!r}")
    if port is None:
        raise MissingPort(f"No ListenPort found in interface '{name}'")

    return InterfaceRecord(
        name=name,
        listen_port=port,
        private_key=private_key,
        public_ip4=public_ip4,
        subnet4=v4.group("subnet"),
        egress=v4.group("egress"),
        public_ip6=v6.group("public") if v6 else None,
        subnet6=v6.group("subnet") if v6 else None,
        allowed_ips=allowed,
        peer_count=peers,
    )


# ---------- Collaborateurs externes ----------

class Host:
    """
    Appels opaques vers les outils du système (wg, systemctl, ip, iptables).
    Les tests en fournissent une version factice.
    """

    def generate_private_key(self) -> str:
        return generate_private_key()

    def public_key(self, private_key: str) -> str:
        return public_key(private_key)

    def generate_preshared_key(self) -> str:
        return generate_preshared_key()

    def default_route_iface(self) -> str:
        return firewall.detect_wan_iface(run_cmd)

    def enable_service(self, interface: str) -> None:
        LOGGER.info("Enabling wg-quick@%s", interface)
        run_cmd(["systemctl", "enable", "--now", f"wg-quick@{interface}"])

    def reload_service(self, interface: str) -> None:
        try:
            run_cmd(["systemctl", "restart", f"wg-quick@{interface}"])
        except CommandFailed as exc:
            LOGGER.warning("Restart of wg-quick@%s failed (%s), falling back to syncconf", interface, exc)
            stripped = run_cmd(["wg-quick", "strip", interface])
            run_cmd(["wg", "syncconf", interface, "/dev/stdin"], input=stripped)

    def save_rules(self, rules_dir: Path) -> list:
        return firewall.save_rules(rules_dir, run_cmd)
