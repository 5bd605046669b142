# src/wg_provisioner/firewall.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Tuple

from .errors import NoDefaultRoute
from .logging_utils import get_logger
from .models import Family

LOGGER = get_logger(__name__)

# La grammaire de ces lignes est relue par wireguard.parse_interface_conf :
# ne pas changer l'ordre des options.
SNAT_TEMPLATE = "{tool} -t nat -{op} POSTROUTING -s {subnet} -o {egress} -j SNAT --to-source {public}"

TOOLS = {
    Family.V4: "iptables",
    Family.V6: "ip6tables",
}

RULE_FILES = {
    Family.V4: "rules.v4",
    Family.V6: "rules.v6",
}


def snat_rules(family: Family, subnet: str, egress: str, public_ip: str) -> Tuple[str, str]:
    """Retourne (PostUp, PostDown) pour la NAT source d'un sous-réseau."""
    params = dict(tool=TOOLS[family], subnet=subnet, egress=egress, public=public_ip)
    return SNAT_TEMPLATE.format(op="A", **params), SNAT_TEMPLATE.format(op="D", **params)


def detect_wan_iface(run: Callable[..., str]) -> str:
    """Interface de la route par défaut (`ip route show default`)."""
    out = run(["ip", "route", "show", "default"]).strip()
    line = next((l for l in out.splitlines() if l.strip()), "")
    if not line:
        raise NoDefaultRoute("Cannot detect default route (no 'ip route show default' output).")
    parts = line.split()
    if "dev" not in parts:
        raise NoDefaultRoute(f"Cannot parse default route line: {line}")
    idx = parts.index("dev")
    if idx + 1 >= len(parts):
        raise NoDefaultRoute(f"Cannot parse WAN iface from: {line}")
    return parts[idx + 1]


def save_rules(rules_dir: Path, run: Callable[..., str], families: Optional[Tuple[Family, ...]] = None) -> list:
    """
    Sauvegarde les règles actives (iptables-save / ip6tables-save)
    dans <rules_dir>/rules.v4 et rules.v6.
    """
    rules_dir = Path(rules_dir)
    rules_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for family in families or (Family.V4, Family.V6):
        dump = run([f"{TOOLS[family]}-save"])
        path = rules_dir / RULE_FILES[family]
        path.write_text(dump, encoding="utf-8")
        LOGGER.info("Saved %s rules to %s", family.value, path)
        written.append(path)
    return written
