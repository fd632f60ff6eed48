"""YAML configuration loading.

``load_config`` returns a plain dict; consumers read their section with
``config.get(section, {}).get(key, default)`` so a missing key never breaks
a call.
"""

from __future__ import annotations

import copy
import os

import yaml

CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.yaml")

DEFAULTS: dict = {
    "database": {"url": None},
    "cache": {"redis_url": None, "ttl": 300},
    "matching": {"suggestion_threshold": 40, "similar_mapping_threshold": 60},
    "mapping_store": {"similar_min_score": 50, "similar_candidates": 50, "similar_shown": 3},
    "traceability": {"expiry_window_days": 30, "critical_days": 3, "urgent_days": 7},
    "lots": {"code_prefix_length": 10},
}


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(path: str | None = None) -> dict:
    """Read *path* (default: the packaged config.yaml) over the built-in defaults."""
    config = copy.deepcopy(DEFAULTS)
    path = path or CONFIG_PATH
    if os.path.exists(path):
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        _merge(config, loaded)
    return config


def section(config: dict | None, name: str) -> dict:
    """Return one config section, falling back to the built-in defaults."""
    merged = dict(DEFAULTS.get(name, {}))
    merged.update((config or {}).get(name) or {})
    return merged
