"""
autoquote/core/paths.py - Centralized Path Configuration

Single source of truth for directory paths. Every module imports from here
instead of computing its own DATA_DIR.
"""

import os
import logging

log = logging.getLogger("autoquote.paths")

_THIS_FILE = os.path.abspath(__file__)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(_THIS_FILE)))

_DEFAULT_DATA_DIR = os.path.join(PROJECT_ROOT, "data")


def _resolve_data_dir() -> str:
    """AUTOQUOTE_DATA_DIR env → project data/ directory."""
    env_dir = os.environ.get("AUTOQUOTE_DATA_DIR", "")
    if env_dir:
        return env_dir
    return _DEFAULT_DATA_DIR


DATA_DIR = _resolve_data_dir()
OUTPUT_DIR = os.path.join(DATA_DIR, "output")
QUOTES_DIR = os.path.join(OUTPUT_DIR, "quotes")
LOG_DIR = os.path.join(DATA_DIR, "logs")
CONFIG_PATH = os.path.join(DATA_DIR, "autoquote_config.json")
DB_PATH = os.path.join(DATA_DIR, "autoquote.db")


def ensure_dir(path: str) -> str:
    """Create a directory if missing and return it."""
    os.makedirs(path, exist_ok=True)
    return path


def validate_paths() -> dict:
    """Runtime validation - call at app startup to catch path issues early.

    Returns:
        {"ok": bool, "errors": [str], "resolved": {name: path}}
    """
    result = {"ok": True, "errors": [], "resolved": {}}
    for name, path in (("DATA_DIR", DATA_DIR), ("OUTPUT_DIR", OUTPUT_DIR),
                       ("QUOTES_DIR", QUOTES_DIR)):
        result["resolved"][name] = path
        try:
            ensure_dir(path)
        except OSError as e:
            result["ok"] = False
            result["errors"].append(f"{name} not writable: {e}")
    if result["errors"]:
        log.error("Path validation failed: %s", "; ".join(result["errors"]))
    return result
