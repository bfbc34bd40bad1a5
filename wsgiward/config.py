"""
Settings and declaration loading.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Tuple, Union

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Declared fields holding paths that may be given relative to the declaration file
PATH_FIELDS = ("root", "keysFile", "secretsFile", "staticFiles", "socket")


@dataclass(frozen=True)
class Settings:
    """Host-level settings shared by every application."""
    home: str = ".wsgiward"
    runtime_dir: str = "/run"
    gunicorn: str = "gunicorn"
    python: str = "python3"
    restart: str = "always"
    restart_sec: int = 5

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            home=os.environ.get("WSGIWARD_HOME", ".wsgiward"),
            runtime_dir=os.environ.get("WSGIWARD_RUNTIME_DIR", "/run"),
            gunicorn=os.environ.get("WSGIWARD_GUNICORN", "gunicorn"),
            python=os.environ.get("WSGIWARD_PYTHON", "python3"),
        )

    @property
    def home_path(self) -> Path:
        return Path(self.home).resolve()


RawItem = Union[dict, Tuple[str, dict]]


def _resolve_paths(raw: Any, base: Path) -> Any:
    if not isinstance(raw, dict):
        return raw
    resolved = dict(raw)
    for key in PATH_FIELDS:
        value = resolved.get(key)
        if isinstance(value, str) and value and not os.path.isabs(value):
            resolved[key] = str((base / value).resolve())
    return resolved


def parse_declaration(data: Any, base_dir: Union[str, Path] = ".") -> List[RawItem]:
    """
    Turn a parsed declaration document into raw records for validation.

    Accepted shapes::

        applications: {blog: {...}, shop: {...}}   # key is the default name
        applications: [{name: blog, ...}, ...]

    Relative paths are resolved against ``base_dir``.
    """
    base = Path(base_dir)
    if not isinstance(data, dict) or "applications" not in data:
        raise ConfigError("declaration must be a mapping with an 'applications' key")
    apps = data["applications"]
    if apps is None:
        return []
    if isinstance(apps, dict):
        return [(str(name), _resolve_paths(raw, base)) for name, raw in apps.items()]
    if isinstance(apps, list):
        return [_resolve_paths(raw, base) for raw in apps]
    raise ConfigError("'applications' must be a mapping or a list")


def load_declaration(path: Union[str, Path]) -> List[RawItem]:
    """
    Load a YAML or JSON declaration file.

    Raises:
        ConfigError: If the file is missing or cannot be parsed
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read declaration {p}: {e.strerror or e}") from e

    try:
        if p.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot parse declaration {p}: {e}") from e

    items = parse_declaration(data, p.parent.resolve())
    logger.info(f"Loaded {len(items)} application declaration(s) from {p}")
    return items
