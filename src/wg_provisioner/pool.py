# src/wg_provisioner/pool.py
"""
Pool d'adresses publiques.

Deux fichiers par famille : le pool (liste fixe maintenue par l'opérateur,
lue seulement) et le registre des adresses utilisées (ajout / retrait).
Le registre est la seule trace durable des allocations.
"""
from __future__ import annotations

import fcntl
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Set

from .errors import LockBusy, PoolExhausted, PoolFileMissing
from .logging_utils import get_logger

LOGGER = get_logger(__name__)

LOCK_NAME = ".wg-provisioner.lock"


def _read_lines(path: Path) -> List[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


class PoolStore:
    """Pool + registre pour une famille d'adresses, stockés en fichiers plats."""

    def __init__(self, pool_file: Path, used_file: Path) -> None:
        self.pool_file = Path(pool_file)
        self.used_file = Path(used_file)

    def ensure(self) -> None:
        if not self.pool_file.exists():
            raise PoolFileMissing(f"Public address pool file not found: {self.pool_file} (create it first)")
        if not self.used_file.exists():
            self.used_file.parent.mkdir(parents=True, exist_ok=True)
            self.used_file.touch()

    def candidates(self) -> List[str]:
        return _read_lines(self.pool_file)

    def used(self) -> Set[str]:
        return set(_read_lines(self.used_file))

    def available(self) -> List[str]:
        used = self.used()
        return [ip for ip in self.candidates() if ip not in used]

    def allocate(self) -> str:
        """Première adresse du pool (ordre du fichier) absente du registre."""
        self.ensure()
        used = self.used()
        for ip in self.candidates():
            if ip not in used:
                return ip
        raise PoolExhausted(self.pool_file, self.used_file)

    def commit(self, address: str) -> None:
        """Ajoute l'adresse au registre, avec fsync avant de rendre la main."""
        # une dernière ligne sans \n (édition à la main) ne doit pas être collée à la nouvelle
        needs_newline = False
        if self.used_file.exists() and self.used_file.stat().st_size > 0:
            with self.used_file.open("rb") as f:
                f.seek(-1, os.SEEK_END)
                needs_newline = f.read(1) != b"\n"

        with self.used_file.open("a", encoding="utf-8") as f:
            if needs_newline:
                f.write("\n")
            f.write(address + "\n")
            f.flush()
            os.fsync(f.fileno())
        LOGGER.info("Committed %s to %s", address, self.used_file)

    def rollback(self, address: str) -> bool:
        """
        Retire la première ligne égale à address. Réécriture atomique
        (fichier temporaire + rename). Retourne False si absente.
        """
        if not self.used_file.exists():
            return False
        with self.used_file.open("r", encoding="utf-8") as f:
            lines = f.readlines()

        for i, line in enumerate(lines):
            if line.rstrip("\r\n") == address:
                del lines[i]
                break
        else:
            LOGGER.warning("Rollback: %s not found in %s", address, self.used_file)
            return False

        fd, tmp = tempfile.mkstemp(dir=str(self.used_file.parent), prefix=".used-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.writelines(lines)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.used_file)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        LOGGER.warning("Rolled back %s from %s", address, self.used_file)
        return True


class ProvisionLock:
    """
    Verrou exclusif (flock) sur <config_dir>/.wg-provisioner.lock.
    Un seul opérateur à la fois modifie registres et artefacts.
    """

    def __init__(self, config_dir: Path) -> None:
        self.path = Path(config_dir) / LOCK_NAME
        self._fh: Optional[object] = None

    def __enter__(self) -> "ProvisionLock":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = self.path.open("a+")
        try:
            fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except (BlockingIOError, OSError) as exc:
            fh.close()
            raise LockBusy(f"Could not acquire lock on {self.path}. Is another instance running?") from exc
        self._fh = fh
        return self

    def __exit__(self, *exc_info) -> None:
        fh = self._fh
        self._fh = None
        if fh is not None:
            fcntl.flock(fh, fcntl.LOCK_UN)
            fh.close()
