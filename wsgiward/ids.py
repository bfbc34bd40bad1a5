"""
Reconcile identifiers: ``r-YYYYMMDD-hhmmss-xxxx``.

Every reconcile and decommission gets one so its events can be grouped in the
event log.
"""

import random
import re
import string
from datetime import datetime
from typing import Optional

RECONCILE_ID_RE = re.compile(r"^r-(\d{8})-(\d{6})-([a-z0-9]{4})$")
_ALPHABET = string.ascii_lowercase + string.digits


def new_reconcile_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    suffix = "".join(random.choices(_ALPHABET, k=4))
    return f"r-{stamp}-{suffix}"


def is_valid_reconcile_id(reconcile_id: str) -> bool:
    """True if ``reconcile_id`` is well-formed and carries a real timestamp."""
    match = RECONCILE_ID_RE.match(reconcile_id)
    if not match:
        return False
    try:
        datetime.strptime(f"{match.group(1)}{match.group(2)}", "%Y%m%d%H%M%S")
    except ValueError:
        return False
    return True
