from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional


DEFAULT_ENV_FILE = ".env"


def _strip_quotes(value: str) -> str:
    text = value.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        return text[1:-1]
    return text


def parse_env_file(path: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    target = Path(path)
    if not target.is_file():
        return values
    for raw in target.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.lower().startswith("export "):
            line = line[7:].strip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        values[key] = _strip_quotes(value)
    return values


def load_env_file(path: str, *, override: bool = False) -> Dict[str, str]:
    """Copy KEY=VALUE pairs from ``path`` into os.environ.

    Existing variables win unless ``override`` is set.
    """
    parsed = parse_env_file(path)
    for key, value in parsed.items():
        if override or key not in os.environ:
            os.environ[key] = value
    return parsed


def env_float(name: str, default: float) -> float:
    """Float from the environment; unset or unparseable gives ``default``."""
    raw: Optional[str] = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default
