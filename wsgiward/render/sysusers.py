from __future__ import annotations

from wsgiward.registry import Registry


def render(registry: Registry) -> str:
    """
    sysusers.d(5) entries: one system user per application. Each ``u`` line
    also creates a group of the same name.
    """
    lines = ["# Generated by wsgiward"]
    for descriptor in registry.descriptors():
        gecos = f"{descriptor.name} wsgi application"
        lines.append(f'u {descriptor.user} - "{gecos}" - -')
    return "\n".join(lines) + "\n"
