from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import logging
import os
import sys

from sirm.domain.errors import ValidationError

BACKENDS = ("sqlite", "rest")


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class Settings:
    backend: str = "sqlite"
    db_path: Optional[Path] = None
    rest_url: Optional[str] = None
    rest_key: Optional[str] = None
    rest_timeout: float = 10.0
    log_level: int = logging.INFO
    store_id: int = 1


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "SerializedReturnsManager") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "inventory.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env

    backend = env.get("SIRM_BACKEND", "sqlite").strip().lower()
    if backend not in BACKENDS:
        raise ValidationError(f"SIRM_BACKEND must be one of: {', '.join(BACKENDS)}.")

    rest_url = env.get("SIRM_REST_URL") or None
    rest_key = env.get("SIRM_REST_KEY") or None
    if backend == "rest" and not (rest_url and rest_key):
        raise ValidationError("SIRM_REST_URL and SIRM_REST_KEY are required for the rest backend.")

    try:
        timeout = float(env.get("SIRM_REST_TIMEOUT", "10"))
        store_id = int(env.get("SIRM_STORE_ID", "1"))
    except ValueError as e:
        raise ValidationError(f"Invalid numeric setting: {e}") from e

    level_name = env.get("SIRM_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValidationError(f"Unknown log level '{level_name}'.")

    db_path = env.get("SIRM_DB_PATH")
    return Settings(
        backend=backend,
        db_path=Path(db_path) if db_path else None,
        rest_url=rest_url,
        rest_key=rest_key,
        rest_timeout=timeout,
        log_level=level,
        store_id=store_id,
    )
