from __future__ import annotations

from typing import List

# Keys a Django application cannot start without
DJANGO_REQUIRED_KEYS = ["SECRET_KEY"]


def parse_envfile_keys(text: str) -> List[str]:
    """Keys of a line-oriented ``KEY=VALUE`` secrets file (``export`` prefixes allowed)."""
    keys: List[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k = line.split("=", 1)[0].strip()
        if k.startswith("export "):
            k = k[len("export "):].strip()
        if k and k not in keys:
            keys.append(k)
    return keys


def missing_keys(text: str, required: List[str]) -> List[str]:
    present = set(parse_envfile_keys(text))
    return [k for k in required if k not in present]
