from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name, "").strip()
    return raw or None


def _xdg_dir(override: str, xdg_var: str, fallback: str) -> Path:
    explicit = _env_str(override)
    if explicit:
        return Path(explicit).expanduser()
    base = _env_str(xdg_var)
    root = Path(base).expanduser() if base else Path.home() / fallback
    return root / "claudepod"


@dataclass(frozen=True)
class ClaudepodSettings:
    config_dir: Path
    data_dir: Path
    strict: bool = False
    log_level: str = "WARNING"
    runtime: Optional[str] = None
    stop_timeout: int = 10

    @property
    def profiles_dir(self) -> Path:
        return self.config_dir / "profiles"

    @property
    def locks_dir(self) -> Path:
        return self.data_dir / "locks"

    @property
    def build_dir(self) -> Path:
        return self.data_dir / "build"

    @classmethod
    def from_env(cls) -> "ClaudepodSettings":
        return cls(
            config_dir=_xdg_dir("CLAUDEPOD_CONFIG_DIR", "XDG_CONFIG_HOME", ".config"),
            data_dir=_xdg_dir("CLAUDEPOD_DATA_DIR", "XDG_DATA_HOME", ".local/share"),
            strict=_env_bool("CLAUDEPOD_STRICT", False),
            log_level=(_env_str("CLAUDEPOD_LOG_LEVEL") or "WARNING").upper(),
            runtime=_env_str("CLAUDEPOD_RUNTIME"),
            stop_timeout=_env_int("CLAUDEPOD_STOP_TIMEOUT", 10),
        )
