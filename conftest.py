"""Root conftest: ``.env.test`` must reach the environment before ``chat_sync.config`` is imported."""
from __future__ import annotations

import os
from pathlib import Path


def _load_env_file(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.is_file():
        return values
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.removeprefix("export ").split("=", 1)
        values[key.strip()] = value.strip().strip("\"'")
    return values


for _key, _value in _load_env_file(Path(__file__).resolve().parent / ".env.test").items():
    os.environ.setdefault(_key, _value)
