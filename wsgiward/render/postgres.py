from __future__ import annotations

from typing import Any, Dict, List

from wsgiward.registry import Registry


def ensure_plan(registry: Registry) -> Dict[str, Any]:
    """
    Databases to ensure and the grants each application user needs.

    Each application owns its database; users get ALL PRIVILEGES on their own
    database and nothing else.
    """
    databases: List[str] = []
    users: List[Dict[str, Any]] = []
    for descriptor in registry.descriptors():
        spec = descriptor.spec
        databases.append(spec.database)
        users.append({
            "name": spec.user,
            "permissions": {f"DATABASE {spec.database}": "ALL PRIVILEGES"},
        })
    return {"databases": databases, "users": users}
