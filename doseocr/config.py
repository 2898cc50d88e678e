"""
config.py - Configuration loader for dose screen OCR.

Loads settings from config.yaml with sensible defaults so that gap
tolerances, thresholds and paths are not hard-coded inside a module.
"""

import os
import yaml
from typing import Any

# Resolve the config file relative to the repo root, not the CWD,
# so imports work regardless of where the script is launched from.
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_CONFIG_PATH = os.path.join(_REPO_ROOT, "config.yaml")
_PACKAGE_DATA = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")

_DEFAULTS: dict[str, Any] = {
    "paths": {
        "dictionary": os.path.join(_PACKAGE_DATA, "OCR_Glyphs_DoseScreen.xml"),
        "reports_folder": "reports",
    },
    "binarize": {
        "threshold": 127,
    },
    "segmentation": {
        "max_component_pixels": 4000,
        "tolerances": {
            "ge": {"horizontal": 6, "vertical": 4},
            "siemens": {"horizontal": 6, "vertical": 2},
            "toshiba": {"horizontal": 13, "vertical": 6},
        },
    },
    "assembly": {
        "spacing": 5,
    },
    "logging": {
        "level": "INFO",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def resolve_path(path: str) -> str:
    """Return *path* unchanged if absolute, else relative to the repo root."""
    if os.path.isabs(path):
        return path
    return os.path.join(_REPO_ROOT, path)


def load_config(config_path: str = _CONFIG_PATH) -> dict[str, Any]:
    """
    Load the YAML configuration file and merge it with built-in defaults.

    Parameters
    ----------
    config_path : str
        Path to config.yaml. Defaults to the repo-root config.yaml.

    Returns
    -------
    dict
        Merged configuration dictionary.
    """
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}
    else:
        user_config = {}

    return _deep_merge(_DEFAULTS, user_config)


# Module-level singleton so callers can just do `from doseocr.config import CONFIG`
CONFIG = load_config()
