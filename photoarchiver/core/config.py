# photoarchiver/core/config.py
# Loads PhotoArchiver settings from a TOML file (defaults + overrides).
# - Reads PHOTOARCHIVER_CONFIG or looks for photoarchiver.toml in CWD and its parents
# - Each section is merged over its defaults, so partial files are fine
# - Invalid values raise ConfigError; CLI flags are applied on top by the caller

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import tomli as tomllib

from photoarchiver.errors import ConfigError
from photoarchiver.services.costs import CostOptions
from photoarchiver.services.reconcile import ConflictResolution
from photoarchiver.storage.base import AccessTier

CONFIG_ENV = "PHOTOARCHIVER_CONFIG"
CONFIG_NAME = "photoarchiver.toml"


# -------------------- Defaults (used if TOML omits keys) --------------------
# TOML has no null; "" and 0 mean "unset" for optional values.
_DEFAULTS = {
    "storage": {
        "container": "photos",
        "directory_format": "{date:%Y}/{date:%m}/{date:%d}",
        "region": "",
        "endpoint_url": "",
        "profile": "",
    },
    "upload": {
        "search_pattern": "**/*",
        "skip": 0,
        "take": 0,                  # 0 = no limit
        "verify": True,
        "delete": False,
        "deduplicate": False,
        "conflict_resolution": "Skip",
        "access_tier": "Cool",
        "parallel_block_count": 0,  # 0 = boto3 default
    },
    "download": {
        "verify": False,
        "archive": False,
        "rehydration_tier": "Hot",
        "rehydration_days": 7,
        "sessions_dir": "Sessions",
    },
    "thumbnails": {
        "max_width": 0,             # both sizes set = enabled
        "max_height": 0,
        "quality": 0.5,
        "container": "photos-thumbnails",
        "force": False,
    },
    "costs": {
        "currency": "$",
    },
    "logging": {
        "logs_dir": "logs",
        "json": False,
    },
}


def _find_config_path() -> Optional[Path]:
    """Find photoarchiver.toml without user input.
    Priority:
      1) PHOTOARCHIVER_CONFIG
      2) ./photoarchiver.toml (CWD)
      3) ascend parents from CWD looking for photoarchiver.toml
    """
    cfg_env = os.getenv(CONFIG_ENV)
    if cfg_env:
        p = Path(cfg_env).expanduser()
        if p.exists():
            return p

    cur = Path.cwd()
    while True:
        candidate = cur / CONFIG_NAME
        if candidate.exists():
            return candidate
        if cur.parent == cur:
            break  # reached filesystem root
        cur = cur.parent
    return None


def _load_config_toml(path: Optional[Path]) -> dict:
    if path is None:
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}") from e


def _section(cfg: dict, name: str) -> dict:
    user = cfg.get(name) or {}
    if not isinstance(user, dict):
        raise ConfigError(f"[{name}] must be a table")
    return {**_DEFAULTS[name], **user}


def _non_negative(section: str, key: str, value) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"[{section}] {key} must be an integer, got {value!r}") from e
    if n < 0:
        raise ConfigError(f"[{section}] {key} must be >= 0, got {n}")
    return n


def _tier(section: str, key: str, value) -> AccessTier:
    try:
        return AccessTier.parse(value)
    except ValueError as e:
        raise ConfigError(f"[{section}] {key}: {e}") from e


def _opt_str(value) -> Optional[str]:
    value = str(value or "").strip()
    return value or None


# -------------------- Settings --------------------

@dataclass
class StorageSettings:
    container: str = "photos"
    directory_format: str = "{date:%Y}/{date:%m}/{date:%d}"
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    profile: Optional[str] = None

    def directory_for(self, date: datetime) -> str:
        return self.directory_format.format(date=date)

    @classmethod
    def from_cfg(cls, c: dict) -> "StorageSettings":
        s = cls(
            container=str(c["container"]).strip(),
            directory_format=str(c["directory_format"]),
            region=_opt_str(c.get("region")),
            endpoint_url=_opt_str(c.get("endpoint_url")),
            profile=_opt_str(c.get("profile")),
        )
        if not s.container:
            raise ConfigError("[storage] container must not be empty")
        try:
            s.directory_for(datetime(2000, 1, 2))
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigError(f"[storage] directory_format is invalid: {s.directory_format!r}") from e
        return s


@dataclass
class UploadOptions:
    search_pattern: str = "**/*"
    skip: int = 0
    take: Optional[int] = None
    verify: bool = True
    delete: bool = False
    deduplicate: bool = False
    conflict_resolution: ConflictResolution = ConflictResolution.SKIP
    access_tier: Optional[AccessTier] = AccessTier.COOL
    parallel_block_count: Optional[int] = None

    @classmethod
    def from_cfg(cls, c: dict) -> "UploadOptions":
        try:
            policy = ConflictResolution.parse(c["conflict_resolution"])
        except ValueError as e:
            raise ConfigError(f"[upload] conflict_resolution: {e}") from e
        take = _non_negative("upload", "take", c["take"])
        blocks = _non_negative("upload", "parallel_block_count", c["parallel_block_count"])
        return cls(
            search_pattern=str(c["search_pattern"]) or "**/*",
            skip=_non_negative("upload", "skip", c["skip"]),
            take=take or None,
            verify=bool(c["verify"]),
            delete=bool(c["delete"]),
            deduplicate=bool(c["deduplicate"]),
            conflict_resolution=policy,
            access_tier=_tier("upload", "access_tier", c["access_tier"]),
            parallel_block_count=blocks or None,
        )


@dataclass
class DownloadOptions:
    verify: bool = False
    archive: bool = False
    rehydration_tier: AccessTier = AccessTier.HOT
    rehydration_days: int = 7
    sessions_dir: Path = Path("Sessions")
    tags: List[str] = field(default_factory=list)
    people: List[str] = field(default_factory=list)

    @classmethod
    def from_cfg(cls, c: dict) -> "DownloadOptions":
        tier = _tier("download", "rehydration_tier", c["rehydration_tier"])
        if tier is AccessTier.ARCHIVE:
            raise ConfigError("[download] rehydration_tier cannot be Archive")
        days = _non_negative("download", "rehydration_days", c["rehydration_days"])
        if days < 1:
            raise ConfigError("[download] rehydration_days must be >= 1")
        return cls(
            verify=bool(c["verify"]),
            archive=bool(c["archive"]),
            rehydration_tier=tier,
            rehydration_days=days,
            sessions_dir=Path(str(c["sessions_dir"])).expanduser(),
        )


@dataclass
class ThumbnailOptions:
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    quality: float = 0.5
    container: str = "photos-thumbnails"
    force: bool = False

    def is_enabled(self) -> bool:
        return bool(self.max_width) and bool(self.max_height)

    @classmethod
    def from_cfg(cls, c: dict) -> "ThumbnailOptions":
        try:
            quality = float(c["quality"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"[thumbnails] quality must be a number, got {c['quality']!r}") from e
        if not 0 < quality <= 1:
            raise ConfigError(f"[thumbnails] quality must be in (0, 1], got {quality}")
        return cls(
            max_width=_non_negative("thumbnails", "max_width", c["max_width"]) or None,
            max_height=_non_negative("thumbnails", "max_height", c["max_height"]) or None,
            quality=quality,
            container=str(c["container"]),
            force=bool(c["force"]),
        )


@dataclass
class Settings:
    storage: StorageSettings = field(default_factory=StorageSettings)
    upload: UploadOptions = field(default_factory=UploadOptions)
    download: DownloadOptions = field(default_factory=DownloadOptions)
    thumbnails: ThumbnailOptions = field(default_factory=ThumbnailOptions)
    costs: CostOptions = field(default_factory=CostOptions)
    logs_dir: Optional[Path] = Path("logs")
    json_logs: bool = False
    source: Optional[Path] = None


def load_settings(path: Optional[Path] = None) -> Settings:
    """Read settings from ``path`` (or the discovered photoarchiver.toml) over the defaults."""
    path = Path(path).expanduser() if path else _find_config_path()
    cfg = _load_config_toml(path)

    try:
        costs = CostOptions.from_dict(_section(cfg, "costs"))
    except (ArithmeticError, ValueError) as e:
        raise ConfigError(f"[costs] prices must be numbers: {e}") from e

    log_cfg = _section(cfg, "logging")
    logs_dir = _opt_str(log_cfg.get("logs_dir"))

    return Settings(
        storage=StorageSettings.from_cfg(_section(cfg, "storage")),
        upload=UploadOptions.from_cfg(_section(cfg, "upload")),
        download=DownloadOptions.from_cfg(_section(cfg, "download")),
        thumbnails=ThumbnailOptions.from_cfg(_section(cfg, "thumbnails")),
        costs=costs,
        logs_dir=Path(logs_dir).expanduser() if logs_dir else None,
        json_logs=bool(log_cfg.get("json", False)),
        source=path,
    )
