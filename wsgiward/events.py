"""
Event logging utilities for NDJSON format.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .state import ensure_home, get_wsgiward_home

EVENTS_FILE = "events.ndjson"


def emit_event(reconcile_id: str, event_type: str, data: Dict[str, Any], home: Optional[Path] = None) -> None:
    """
    Emit an event to the events.ndjson file.

    Args:
        reconcile_id: Reconcile ID the event belongs to
        event_type: Event type (e.g., "RECONCILE_START", "SECRET_STAGED")
        data: Event data; must not carry secret values
        home: Explicit home directory
    """
    logs_file = ensure_home(home) / EVENTS_FILE

    event = {
        "ts": datetime.now().isoformat(),
        "reconcile_id": reconcile_id,
        "type": event_type,
        "data": data
    }

    with open(logs_file, "a") as f:
        f.write(json.dumps(event) + "\n")
        f.flush()  # Ensure immediate write


def read_events(home: Optional[Path] = None, reconcile_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Read events, optionally only those of one reconcile.

    Args:
        home: Explicit home directory
        reconcile_id: Filter on this reconcile ID

    Returns:
        List of events
    """
    logs_file = (home or get_wsgiward_home()) / EVENTS_FILE

    if not logs_file.exists():
        return []

    events = []
    with open(logs_file, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue  # Skip malformed lines
                if reconcile_id is None or event.get("reconcile_id") == reconcile_id:
                    events.append(event)

    return events


def get_last_event(home: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """
    Get the last event from the log.

    Returns:
        Last event or None if no events
    """
    events = read_events(home)
    return events[-1] if events else None


def get_status_from_events(home: Optional[Path] = None) -> str:
    """
    Determine the state of the last reconcile from events.

    Returns:
        Status string
    """
    last_event = get_last_event(home)
    if not last_event:
        return "unknown"

    event_type = last_event.get("type", "")

    # Map event types to status
    status_map = {
        EventTypes.RECONCILE_START: "validating",
        EventTypes.SPEC_VALID: "staging",
        EventTypes.SECRET_STAGED: "staging",
        EventTypes.SECRET_UNCHANGED: "staging",
        EventTypes.REGISTRY_SWAPPED: "reconciled",
        EventTypes.APP_REMOVED: "reconciled",
        EventTypes.DECOMMISSIONED: "reconciled",
        EventTypes.SPEC_INVALID: "failed",
        EventTypes.STAGING_FAILED: "failed",
        EventTypes.ERROR: "failed",
    }

    return status_map.get(event_type, "unknown")


# Predefined event types for consistency
class EventTypes:
    RECONCILE_START = "RECONCILE_START"
    SPEC_VALID = "SPEC_VALID"
    SPEC_INVALID = "SPEC_INVALID"
    SECRET_STAGED = "SECRET_STAGED"
    SECRET_UNCHANGED = "SECRET_UNCHANGED"
    STAGING_FAILED = "STAGING_FAILED"
    REGISTRY_SWAPPED = "REGISTRY_SWAPPED"
    APP_REMOVED = "APP_REMOVED"
    DECOMMISSIONED = "DECOMMISSIONED"
    ERROR = "ERROR"
