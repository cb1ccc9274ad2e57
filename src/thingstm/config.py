"""Engine configuration loaded from ``THINGSTM_*`` environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ENV_PREFIX = "THINGSTM"

USER_ROOT = Path.home() / ".local" / "share" / "thingstm"

STORAGE_FORMATS = ("json", "yaml")


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class EngineConfig:
    data_dir: Path
    local_dir: Path
    backup_dir: Path
    storage_format: str = "json"
    save_debounce: float = 0.25
    backup_keep: int = 10

    @staticmethod
    def from_env(data_dir: Optional[Path] = None) -> "EngineConfig":
        """
        Build the config from ``THINGSTM_*`` variables.

        A data directory chosen by the caller or by ``THINGSTM_DATA_DIR`` also holds the
        ``local`` and ``backups`` directories; otherwise they sit next to the default one.
        """
        if data_dir:
            data_dir = Path(data_dir)
            root = data_dir
        else:
            data_dir = _env_path(_k("DATA_DIR"), USER_ROOT / "data")
            root = USER_ROOT if data_dir == USER_ROOT / "data" else data_dir
        local_dir = _env_path(_k("LOCAL_DIR"), root / "local")
        backup_dir = _env_path(_k("BACKUP_DIR"), root / "backups")

        storage_format = os.getenv(_k("STORAGE_FORMAT"), "json").strip().lower()
        if storage_format == "yml":
            storage_format = "yaml"
        if storage_format not in STORAGE_FORMATS:
            storage_format = "json"

        return EngineConfig(
            data_dir=data_dir,
            local_dir=local_dir,
            backup_dir=backup_dir,
            storage_format=storage_format,
            save_debounce=_env_float(_k("SAVE_DEBOUNCE"), 0.25),
            backup_keep=max(1, _env_int(_k("BACKUP_KEEP"), 10)),
        )

