"""
callrank/config.py
Automated config with auto-detection. Persists to callrank_config.json.

Backend sync is OFF unless backend_enabled is true AND backend_url is set.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from callrank.backend.base import DEFAULT_MAX_RETRIES, CounterStore
from callrank.sync.delta_engine import SyncSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "calls_dir": None,
    "db_path": "callrank.db",
    "contacts_file": None,
    "time_range": "ALL_TIME",
    "backend_enabled": False,
    "backend_url": None,
    "backend_root": "callrank-stats",
    "backend_auth": None,
    "user_id": "",
    "sync_max_retries": DEFAULT_MAX_RETRIES,
    "sync_timeout_sec": 10.0,
}

# Common backup locations to auto-detect
AUTO_DETECT_PATHS = [
    Path.home() / "SMSBackup",
    Path.home() / "Call Log Backup",
    Path(r"C:\Users") / "{user}" / "Documents" / "SMSBackup",
    Path("/sdcard/SMSBackup"),
    Path("/sdcard/Download/SMSBackup"),
]


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / "callrank_config.json"


def load_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from callrank_config.json. Returns defaults if missing."""
    path = _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return {**DEFAULT_CONFIG, **data}
            logger.warning("Config file is not a JSON object — using defaults")
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Config load failed: {e}")
    return dict(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """Persist config to callrank_config.json."""
    path = _config_path(project_root)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    return path


def auto_detect_calls_dir() -> Optional[Path]:
    """Scan common paths for calls-*.xml files. Returns first match or None."""
    for p in AUTO_DETECT_PATHS:
        try:
            expanded = Path(str(p).format(user=os.environ.get("USERNAME", "user")))
        except (KeyError, IndexError):
            continue
        if expanded.is_dir() and any(expanded.glob("calls-*.xml")):
            return expanded
    return None


def ensure_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load or create config. Assigns an anonymous user_id on first run and
    auto-detects calls_dir if not set. Persists when anything changed.
    """
    config  = load_config(project_root)
    changed = False
    if not config.get("user_id"):
        config["user_id"] = uuid.uuid4().hex
        changed = True
    if not config.get("calls_dir"):
        detected = auto_detect_calls_dir()
        if detected:
            config["calls_dir"] = str(detected)
            logger.info(f"Auto-detected call log dir: {detected}")
            changed = True
    if changed:
        save_config(config, project_root)
    return config


def sync_settings_from_config(config: Dict[str, Any]) -> SyncSettings:
    return SyncSettings(
        enabled     = bool(config.get("backend_enabled")) and bool(config.get("backend_url")),
        identity    = str(config.get("user_id") or ""),
        max_retries = int(config.get("sync_max_retries") or DEFAULT_MAX_RETRIES),
    )


def counter_store_from_config(config: Dict[str, Any]) -> Optional[CounterStore]:
    """The configured backend, or None when sync is switched off."""
    if not sync_settings_from_config(config).enabled:
        return None
    from callrank.backend.firebase_store import FirebaseCounterStore
    return FirebaseCounterStore(
        base_url    = config["backend_url"],
        root        = config.get("backend_root") or "callrank-stats",
        auth_token  = config.get("backend_auth") or None,
        timeout_sec = float(config.get("sync_timeout_sec") or 10.0),
    )
