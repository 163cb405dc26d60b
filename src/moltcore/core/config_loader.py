"""Configuration file loading: JSONC parsing, env substitution, deep merge."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict

import commentjson

from ..util.log import Log

log = Log.create({"service": "config.loader"})

_ENV_PATTERN = re.compile(r"\{env:([^}]+)\}")

# List-valued keys whose entries accumulate across config layers instead of
# being replaced by the more specific layer.
_ACCUMULATING_KEYS = {"model_fallbacks", "disabled_providers"}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into dicts."""
    result = base.copy()

    for key, value in override.items():
        current = result.get(key)
        if key in _ACCUMULATING_KEYS and isinstance(current, list) and isinstance(value, list):
            merged = list(current)
            for item in value:
                if item not in merged:
                    merged.append(item)
            result[key] = merged
        elif isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def substitute_env_vars(text: str) -> str:
    """Replace ``{env:VAR}`` with the variable's value, or an empty string."""
    return _ENV_PATTERN.sub(lambda match: os.environ.get(match.group(1), ""), text)


def parse_config_text(text: str) -> Dict[str, Any]:
    """Parse JSON with comments after env substitution."""
    data = commentjson.loads(substitute_env_vars(text))
    if not isinstance(data, dict):
        raise ValueError("config root must be an object")
    return data


def load_json_file(filepath: str) -> Dict[str, Any]:
    """Load a JSON or JSONC file, returning ``{}`` when missing or unreadable."""
    path = Path(filepath)
    if not path.exists():
        return {}

    try:
        return parse_config_text(path.read_text(encoding="utf-8"))
    except (OSError, ValueError, UnicodeDecodeError) as e:
        log.error("failed to load config file", {"path": filepath, "error": str(e)})
        return {}
