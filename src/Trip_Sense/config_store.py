"""
Trip_Sense.config_store

Central place for user-level configuration and lightweight JSON caching.

Responsibilities:
- Store & retrieve trip settings (store priority, section rank overrides,
  classifier threshold, external service URLs, retry tuning, logging)
- Provide a simple JSON-based cache for external responses (remote
  classification results, remote deal feeds)

The config directory defaults to src/Trip_Sense/config/ and can be moved with
the TRIP_SENSE_CONFIG_DIR environment variable (tests point it at a tmp dir).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional


CONFIG_DIR_ENV = "TRIP_SENSE_CONFIG_DIR"

_BASE_DIR = Path(__file__).resolve().parent
_CONFIG_FILENAME = "trip_config.json"
_CACHE_FILENAME = "cache.json"


@dataclass
class TripConfig:
    """
    In-memory representation of user-level config.

    Unknown keys in the JSON file are ignored, missing keys take the defaults
    below.
    """
    store_priority: List[str] = field(default_factory=list)
    section_rank_overrides: Dict[str, int] = field(default_factory=dict)
    provisional_confidence_threshold: float = 0.6
    classification_service_url: str = ""
    classification_timeout_seconds: float = 3.0
    deals_feed_url: str = ""
    deals_cache_days: int = 1
    persistence_retry_attempts: int = 3
    persistence_retry_wait_seconds: float = 0.5
    reconcile_interval_seconds: float = 30.0
    log_level: str = "INFO"
    log_file: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store_priority": list(self.store_priority),
            "section_rank_overrides": dict(self.section_rank_overrides),
            "provisional_confidence_threshold": self.provisional_confidence_threshold,
            "classification_service_url": self.classification_service_url,
            "classification_timeout_seconds": self.classification_timeout_seconds,
            "deals_feed_url": self.deals_feed_url,
            "deals_cache_days": self.deals_cache_days,
            "persistence_retry_attempts": self.persistence_retry_attempts,
            "persistence_retry_wait_seconds": self.persistence_retry_wait_seconds,
            "reconcile_interval_seconds": self.reconcile_interval_seconds,
            "log_level": self.log_level,
            "log_file": self.log_file,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TripConfig":
        d = TripConfig()
        if not isinstance(data, dict):
            return d

        overrides: Dict[str, int] = {}
        for k, v in (data.get("section_rank_overrides") or {}).items():
            try:
                overrides[str(k)] = int(v)
            except (TypeError, ValueError):
                continue

        return TripConfig(
            store_priority=[str(s).strip() for s in data.get("store_priority", []) if s and str(s).strip()],
            section_rank_overrides=overrides,
            provisional_confidence_threshold=_as_float(
                data.get("provisional_confidence_threshold"), d.provisional_confidence_threshold
            ),
            classification_service_url=str(data.get("classification_service_url") or ""),
            classification_timeout_seconds=_as_float(
                data.get("classification_timeout_seconds"), d.classification_timeout_seconds
            ),
            deals_feed_url=str(data.get("deals_feed_url") or ""),
            deals_cache_days=int(_as_float(data.get("deals_cache_days"), d.deals_cache_days)),
            persistence_retry_attempts=max(
                1, int(_as_float(data.get("persistence_retry_attempts"), d.persistence_retry_attempts))
            ),
            persistence_retry_wait_seconds=_as_float(
                data.get("persistence_retry_wait_seconds"), d.persistence_retry_wait_seconds
            ),
            reconcile_interval_seconds=_as_float(
                data.get("reconcile_interval_seconds"), d.reconcile_interval_seconds
            ),
            log_level=str(data.get("log_level") or d.log_level).upper(),
            log_file=str(data.get("log_file") or ""),
        )


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ---- Internal JSON helpers -------------------------------------------------


def get_config_dir() -> Path:
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)
    return _BASE_DIR / "config"


def _config_file() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def _cache_file() -> Path:
    return get_config_dir() / _CACHE_FILENAME


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        # corrupt or unreadable file: start fresh
        return default


def _save_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


# ---- Public: config accessors ----------------------------------------------


def load_config() -> TripConfig:
    """
    Load configuration from disk. If none exists or it is invalid,
    returns a default TripConfig.
    """
    raw = _load_json(_config_file(), {})
    return TripConfig.from_dict(raw)


def save_config(cfg: TripConfig) -> None:
    _save_json(_config_file(), cfg.to_dict())


def get_store_priority() -> List[str]:
    """
    Return user-preferred store ordering as a list of store names.

    Example:
        ["FreshMart", "Costco", "Save-On-Foods"]
    """
    return load_config().store_priority


def set_store_priority(stores: List[str]) -> None:
    """
    Persist user-preferred store ordering. Empty or whitespace-only entries
    are stripped.
    """
    cfg = load_config()
    cfg.store_priority = [s.strip() for s in stores if s and s.strip()]
    save_config(cfg)


def set_section_rank_override(section_id: str, rank: int) -> None:
    cfg = load_config()
    cfg.section_rank_overrides[section_id] = int(rank)
    save_config(cfg)


# ---- Public: Lightweight JSON cache ----------------------------------------


def cache_get(key: str, max_age_days: float = 7) -> Any:
    """
    Return cached value for key if it exists and is not older than max_age_days.
    Otherwise returns None.
    """
    raw = _load_json(_cache_file(), {})
    if not isinstance(raw, dict):
        return None
    entry = raw.get(key)
    if not entry:
        return None

    ts_str = entry.get("timestamp")
    if not ts_str:
        return None

    try:
        ts = datetime.fromisoformat(ts_str)
    except ValueError:
        return None

    if datetime.now() - ts > timedelta(days=max_age_days):
        return None

    return entry.get("value")


def cache_set(key: str, value: Any) -> None:
    """
    Store key -> value in the cache with a current timestamp. Overwrites any
    existing entry for the same key.
    """
    raw = _load_json(_cache_file(), {})
    if not isinstance(raw, dict):
        raw = {}
    raw[key] = {
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "value": value,
    }
    _save_json(_cache_file(), raw)


def cache_clear(prefix: Optional[str] = None) -> int:
    """
    Drop cache entries (all, or those whose key starts with prefix).
    Returns the number of entries removed.
    """
    raw = _load_json(_cache_file(), {})
    if not isinstance(raw, dict) or not raw:
        return 0
    if prefix is None:
        removed = len(raw)
        raw = {}
    else:
        keys = [k for k in raw if k.startswith(prefix)]
        removed = len(keys)
        for k in keys:
            del raw[k]
    _save_json(_cache_file(), raw)
    return removed
