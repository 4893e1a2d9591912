"""
Persisted runtime overrides for the trading services.

The store is one JSON object whose top-level keys are namespaces (``risk``,
``ensemble``, ``thresholds``, ``router``, ``engine``). Each settings object's
``load()`` overlays its namespace on the defaults from ``config.py``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)

SETTINGS_FILE = Path(os.getenv("TRADEGATE_SETTINGS_FILE", "data/settings_store.json"))
_STORE_LOCK = Lock()


def _load_all() -> Dict[str, Any]:
    path = SETTINGS_FILE
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("Cannot read settings store %s: %s", path, exc)
        return {}
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Settings store %s is corrupted (%s); using defaults", path, exc)
        return {}
    return payload if isinstance(payload, dict) else {}


def _dump_all(data: Mapping[str, Any]) -> None:
    path = SETTINGS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_suffix(".tmp")
    try:
        staging.write_text(json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")
        staging.replace(path)
    except OSError:
        logger.exception("Failed to persist settings store %s", path)
        raise


def load_namespace(namespace: str) -> Dict[str, Any]:
    """Copy of one namespace; unknown namespaces come back empty."""
    with _STORE_LOCK:
        section = _load_all().get(namespace)
    return dict(section) if isinstance(section, dict) else {}


def save_namespace(namespace: str, payload: Dict[str, Any]) -> None:
    if not isinstance(payload, dict):
        raise ValueError(f"settings for '{namespace}' must be a mapping")
    with _STORE_LOCK:
        data = _load_all()
        data[namespace] = dict(payload)
        _dump_all(data)
    logger.info("Saved %d %s setting(s)", len(payload), namespace)


def merged_settings(namespace: str, defaults: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay the persisted namespace on top of ``defaults``, ignoring unknown keys."""
    overrides = load_namespace(namespace)
    unknown = sorted(set(overrides) - set(defaults))
    if unknown:
        logger.warning("Ignoring unknown %s settings: %s", namespace, ", ".join(unknown))
    return {key: overrides.get(key, value) for key, value in defaults.items()}
