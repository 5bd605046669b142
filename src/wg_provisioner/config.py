# src/wg_provisioner/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

DEFAULT_CONFIG_DIR = Path("/etc/wireguard")
DEFAULT_RULES_DIR = Path("/etc/iptables")
DEFAULT_BASE_PORT = 51620
DEFAULT_KEEPALIVE = 25
DEFAULT_V6_ATTEMPTS = 10
DEFAULT_CLIENT_DNS = ["8.8.8.8", "2001:4860:4860::8888"]

ENV_CONFIG_DIR = "WG_PROVISIONER_CONFIG_DIR"
ENV_BASE_PORT = "WG_PROVISIONER_BASE_PORT"
ENV_LOG_DIR = "WG_PROVISIONER_LOG_DIR"


@dataclass
class Settings:
    config_dir: Path = DEFAULT_CONFIG_DIR
    rules_dir: Path = DEFAULT_RULES_DIR
    base_port: int = DEFAULT_BASE_PORT
    keepalive: int = DEFAULT_KEEPALIVE
    v6_attempts: int = DEFAULT_V6_ATTEMPTS
    client_dns: List[str] = field(default_factory=lambda: list(DEFAULT_CLIENT_DNS))
    log_dir: Optional[Path] = None

    # Fichiers du pool, relatifs à config_dir
    @property
    def client_dir(self) -> Path:
        return self.config_dir / "clients"

    @property
    def pool_file_v4(self) -> Path:
        return self.config_dir / "public_ips.txt"

    @property
    def pool_file_v6(self) -> Path:
        return self.config_dir / "public_ip6s.txt"

    @property
    def used_file_v4(self) -> Path:
        return self.config_dir / "used_ips.txt"

    @property
    def used_file_v6(self) -> Path:
        return self.config_dir / "used_ip6s.txt"


def _parse_int(value: str, *, source: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {source} must be an integer, got {value!r}") from exc


def load_settings(
    config_dir: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Valeurs par défaut, surchargées par l'environnement puis par les
    arguments explicites (--config-dir).
    """
    env = os.environ if environ is None else environ
    settings = Settings()

    if env.get(ENV_CONFIG_DIR):
        settings.config_dir = Path(env[ENV_CONFIG_DIR])
    if env.get(ENV_BASE_PORT):
        port = _parse_int(env[ENV_BASE_PORT], source=ENV_BASE_PORT)
        if not 1 <= port <= 65535:
            raise ValueError(f"Environment variable {ENV_BASE_PORT} out of range (1-65535): {port}")
        settings.base_port = port
    if env.get(ENV_LOG_DIR):
        settings.log_dir = Path(env[ENV_LOG_DIR])

    if config_dir is not None:
        settings.config_dir = Path(config_dir)
    return settings
