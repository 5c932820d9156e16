# sshscan/config.py
"""
Scanner configuration.

Everything is read from SSHSCAN_* environment variables with sensible
defaults. Nothing here opens files or sockets.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_POOL_SIZE = 5
DEFAULT_TIMEOUT = 3.0
DEFAULT_KEYSCAN_BIN = "ssh-keyscan"
DEFAULT_KEYSCAN_TIMEOUT = 10
DEFAULT_CLIENT_BANNER = "SSH-2.0-sshscan_1.0"
DEFAULT_AUTH_USERNAME = "sshscan"      # throwaway name for the "none" auth query


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from e


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e


@dataclass
class ScanConfig:
    pool_size: int = DEFAULT_POOL_SIZE
    timeout: float = DEFAULT_TIMEOUT
    keyscan_bin: str = DEFAULT_KEYSCAN_BIN
    keyscan_timeout: int = DEFAULT_KEYSCAN_TIMEOUT
    fingerprint_db: Optional[str] = None        # SQLAlchemy URL; None = per-batch memory store
    policy_file: Optional[str] = None
    client_banner: str = DEFAULT_CLIENT_BANNER
    auth_username: str = DEFAULT_AUTH_USERNAME
    log_level: str = "INFO"

    def __post_init__(self):
        if self.pool_size < 1:
            raise ValueError(f"pool size must be at least 1, got {self.pool_size}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.keyscan_timeout < 1:
            raise ValueError(f"keyscan timeout must be at least 1, got {self.keyscan_timeout}")
        if not self.client_banner.startswith("SSH-2.0-"):
            raise ValueError("client banner must start with 'SSH-2.0-'")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ScanConfig":
        env = os.environ if env is None else env
        level = (env.get("SSHSCAN_LOG_LEVEL") or "INFO").upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"SSHSCAN_LOG_LEVEL: unknown level {level!r}")
        return cls(
            pool_size=_int(env, "SSHSCAN_POOL_SIZE", DEFAULT_POOL_SIZE),
            timeout=_float(env, "SSHSCAN_TIMEOUT", DEFAULT_TIMEOUT),
            keyscan_bin=env.get("SSHSCAN_KEYSCAN_BIN") or DEFAULT_KEYSCAN_BIN,
            keyscan_timeout=_int(env, "SSHSCAN_KEYSCAN_TIMEOUT", DEFAULT_KEYSCAN_TIMEOUT),
            fingerprint_db=env.get("SSHSCAN_FINGERPRINT_DB") or None,
            policy_file=env.get("SSHSCAN_POLICY_FILE") or None,
            client_banner=env.get("SSHSCAN_CLIENT_BANNER") or DEFAULT_CLIENT_BANNER,
            auth_username=env.get("SSHSCAN_AUTH_USERNAME") or DEFAULT_AUTH_USERNAME,
            log_level=level,
        )
