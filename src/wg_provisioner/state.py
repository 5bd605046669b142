# src/wg_provisioner/state.py
"""
Stockage des artefacts : <config_dir>/<iface>.conf pour les interfaces,
<client_dir>/<iface>/<client>.conf pour les profils clients.

Il n'y a pas d'autre registre : l'état d'une interface est relu depuis
son fichier à chaque opération (voir wireguard.parse_interface_conf).
"""
from __future__ import annotations
import os
import re
from pathlib import Path
from typing import List, Optional, Set

from .errors import IllegalName, InterfaceExists, InterfaceNotFound
from .logging_utils import get_logger
from .models import InterfaceRecord
from .wireguard import parse_interface_conf

LOGGER = get_logger(__name__)

_IFACE_NAME = re.compile(r"^[a-zA-Z0-9]+$")
_NUMBERED_IFACE = re.compile(r"^wg([0-9]+)$")
_LISTEN_PORT = re.compile(r"^\s*ListenPort\s*=\s*([0-9]+)\s*$", re.MULTILINE)


def _write_private(path: Path, content: str, exclusive: bool = False) -> None:
    # 600 dès la création, jamais de fenêtre en lecture pour les autres
    flags = os.O_WRONLY | os.O_CREAT | (os.O_EXCL if exclusive else os.O_TRUNC)
    fd = os.open(str(path), flags, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    path.chmod(0o600)


class ArtifactStore:
    def __init__(self, config_dir: Path, client_dir: Optional[Path] = None) -> None:
        self.config_dir = Path(config_dir)
        self.client_dir = Path(client_dir) if client_dir else self.config_dir / "clients"

    # ---------- Interfaces ----------

    def interface_path(self, name: str) -> Path:
        return self.config_dir / f"{name}.conf"

    def exists(self, name: str) -> bool:
        return self.interface_path(name).is_file()

    def list_interfaces(self) -> List[str]:
        if not self.config_dir.is_dir():
            return []
        return sorted(p.stem for p in self.config_dir.glob("*.conf") if p.is_file())

    def latest_interface(self) -> Optional[str]:
        """Interface dont le fichier a été modifié le plus récemment."""
        paths = [self.interface_path(n) for n in self.list_interfaces()]
        if not paths:
            return None
        return max(paths, key=lambda p: p.stat().st_mtime).stem

    def default_interface_name(self) -> str:
        numbers = [0]
        for name in self.list_interfaces():
            m = _NUMBERED_IFACE.match(name)
            if m:
                numbers.append(int(m.group(1)))
        return f"wg{max(numbers) + 1}"

    def listen_ports(self) -> Set[int]:
        """Ports déclarés par les artefacts existants, service actif ou non."""
        ports = set()
        for name in self.list_interfaces():
            try:
                text = self.interface_path(name).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                LOGGER.warning("Skipping unreadable artifact %s: %s", name, exc)
                continue
            m = _LISTEN_PORT.search(text)
            if m:
                ports.add(int(m.group(1)))
        return ports

    def check_new_interface_name(self, name: str) -> None:
        if not _IFACE_NAME.match(name or ""):
            raise IllegalName(f"Illegal interface name {name!r} (letters and digits only)")
        if self.exists(name):
            raise InterfaceExists(f"Interface already exists: {self.interface_path(name)}")

    def write_interface(self, name: str, content: str) -> Path:
        path = self.interface_path(name)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        try:
            _write_private(path, content, exclusive=True)
        except FileExistsError as exc:
            raise InterfaceExists(f"Interface already exists: {path}") from exc
        LOGGER.info("Wrote interface artifact %s", path)
        return path

    def delete_interface(self, name: str) -> None:
        path = self.interface_path(name)
        if path.exists():
            path.unlink()
            LOGGER.warning("Removed interface artifact %s", path)

    def read_interface(self, name: str) -> str:
        path = self.interface_path(name)
        if not path.is_file():
            raise InterfaceNotFound(f"Interface not found: {path}")
        return path.read_text(encoding="utf-8")

    def load(self, name: str) -> InterfaceRecord:
        return parse_interface_conf(name, self.read_interface(name))

    def append_peer(self, name: str, block: str) -> int:
        """Ajoute un bloc [Peer]. Retourne la taille d'avant, pour pouvoir annuler."""
        path = self.interface_path(name)
        if not path.is_file():
            raise InterfaceNotFound(f"Interface not found: {path}")
        size = path.stat().st_size
        with path.open("a", encoding="utf-8") as f:
            f.write(block)
        LOGGER.info("Appended peer block to %s", path)
        return size

    def truncate_interface(self, name: str, size: int) -> None:
        path = self.interface_path(name)
        with path.open("r+b") as f:
            f.truncate(size)
        LOGGER.warning("Truncated %s back to %d bytes", path, size)

    # ---------- Clients ----------

    def clients_path(self, interface: str) -> Path:
        return self.client_dir / interface

    def client_path(self, interface: str, client: str) -> Path:
        return self.clients_path(interface) / f"{client}.conf"

    def list_clients(self, interface: str) -> List[str]:
        d = self.clients_path(interface)
        if not d.is_dir():
            return []
        return sorted(p.stem for p in d.glob("*.conf"))

    def default_client_name(self, interface: str) -> str:
        return f"client{len(self.list_clients(interface)) + 1}"

    def check_new_client_name(self, interface: str, name: str) -> None:
        if not name or "/" in name or "\\" in name:
            raise IllegalName(f"Illegal client name {name!r}")
        if self.client_path(interface, name).exists():
            raise IllegalName(f"Client already exists: {self.client_path(interface, name)}")

    def write_client(self, interface: str, client: str, content: str) -> Path:
        path = self.client_path(interface, client)
        path.parent.mkdir(parents=True, exist_ok=True)
        _write_private(path, content)
        LOGGER.info("Wrote client artifact %s", path)
        return path

    def delete_client(self, interface: str, client: str) -> None:
        path = self.client_path(interface, client)
        if path.exists():
            path.unlink()
            LOGGER.warning("Removed client artifact %s", path)
