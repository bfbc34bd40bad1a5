from __future__ import annotations

import shlex
from typing import Iterable, Optional

from wsgiward.descriptor.models import ServiceDescriptor


def source_and_exec(secrets_path: str, argv: Iterable[str]) -> str:
    """Shell snippet that exports the staged secrets, then execs ``argv``."""
    command = " ".join(shlex.quote(a) for a in argv)
    return f"set -a; . {shlex.quote(secrets_path)}; set +a; exec {command}"


def render_manage_script(descriptor: ServiceDescriptor, python: str = "python3") -> Optional[str]:
    """
    ``manage-django-<name>``: run manage.py as the application user with the
    application's environment and secrets. None for non-Django applications.
    """
    spec = descriptor.spec
    if not spec.is_django:
        return None
    exports = "; ".join(f"export {k}={shlex.quote(v)}" for k, v in descriptor.environment_pairs)
    inner = f'{exports}; {source_and_exec(descriptor.secrets_path, [python, spec.manage_script])} "$@"'
    return (
        "#!/bin/sh\n"
        f"# manage.py of {spec.name}, run as {spec.user}\n"
        f"exec sudo -u {shlex.quote(spec.user)} /bin/sh -c {shlex.quote(inner)} "
        f"manage-django-{spec.name} \"$@\"\n"
    )


def manage_script_name(descriptor: ServiceDescriptor) -> str:
    return f"manage-django-{descriptor.name}"
