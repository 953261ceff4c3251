from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path
    snapshots_dir: Path


@dataclass(frozen=True)
class AppSettings:
    company_key: str = "scc"
    maps_api_key: str = ""
    geo_timeout_seconds: float = 5.0
    snapshot_retention: int = 30

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            company_key=os.environ.get("CTP_COMPANY_KEY", "").strip() or "scc",
            maps_api_key=os.environ.get("CTP_MAPS_API_KEY", "").strip(),
            geo_timeout_seconds=float(os.environ.get("CTP_GEO_TIMEOUT", "5") or 5),
            snapshot_retention=int(os.environ.get("CTP_SNAPSHOT_RETENTION", "30") or 30),
        )


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "ConstructTrack") -> AppPaths:
    override = os.environ.get("CTP_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    snapshots = base / "snapshots"
    db = base / "constructtrack.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)
    snapshots.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs, snapshots_dir=snapshots)
