"""Settings-file loading for careloop.

A missing or blank file reads as an empty mapping. A file that exists
but does not parse, or whose top level is not a mapping, is a
configuration mistake and raises ValueError naming the file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

JSON_SUFFIXES = {".json"}


def read_text(path: Path) -> str:
    if not path.is_file():
        return ""
    return path.read_text(encoding="utf-8")


def load_mapping(path: Path) -> dict[str, Any]:
    """Parse *path* as JSON or YAML (by suffix) into a dict."""
    text = read_text(path)
    if not text.strip():
        return {}
    try:
        if path.suffix.lower() in JSON_SUFFIXES:
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Could not parse settings file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return data
