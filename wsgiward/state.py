"""
State management for the registry snapshot.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

REGISTRY_FILE = "registry.json"


def get_wsgiward_home() -> Path:
    """
    Get the wsgiward home directory.

    Returns:
        Path: wsgiward home directory
    """
    home = os.environ.get("WSGIWARD_HOME", ".wsgiward")
    return Path(home).resolve()


def ensure_home(home: Optional[Path] = None) -> Path:
    """
    Create the home directory and return its path.

    Args:
        home: Explicit home directory, defaults to WSGIWARD_HOME

    Returns:
        Path: Home directory
    """
    home = home or get_wsgiward_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def write_registry_snapshot(snapshot: Dict[str, Any], home: Optional[Path] = None) -> Path:
    """
    Atomically write the registry snapshot to registry.json.

    Args:
        snapshot: Output of Registry.to_snapshot()
        home: Explicit home directory

    Returns:
        Path: Written file
    """
    home = ensure_home(home)
    target = home / REGISTRY_FILE
    fd, tmp = tempfile.mkstemp(prefix=".registry.", dir=home)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(snapshot, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    return target


def read_registry_snapshot(home: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """
    Read the registry snapshot.

    Args:
        home: Explicit home directory

    Returns:
        Dict: Snapshot or None if no reconcile has succeeded yet
    """
    home = home or get_wsgiward_home()
    snapshot_file = home / REGISTRY_FILE

    if not snapshot_file.exists():
        return None

    with open(snapshot_file, "r") as f:
        return json.load(f)
