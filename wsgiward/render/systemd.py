from __future__ import annotations

from typing import List, Tuple

from wsgiward.descriptor.models import ServiceDescriptor
from .scripts import source_and_exec

SHELL = "/bin/sh"


def _escape(value: str, command: bool = False) -> str:
    """Escape for a double-quoted systemd value; commands also suppress $VAR expansion."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("%", "%%")
    return escaped.replace("$", "$$") if command else escaped


def _literal(value: str) -> str:
    return value.replace("%", "%%")


def _shell_line(secrets_path: str, argv) -> str:
    return f'{SHELL} -c "{_escape(source_and_exec(secrets_path, argv), command=True)}"'


def service_directives(descriptor: ServiceDescriptor) -> List[Tuple[str, str]]:
    """Ordered [Service] directives."""
    lines: List[Tuple[str, str]] = [
        ("Type", "simple"),
        ("User", descriptor.user),
        ("Group", descriptor.group),
        ("WorkingDirectory", _literal(descriptor.working_directory)),
    ]
    for key, value in descriptor.environment_pairs:
        lines.append(("Environment", f'"{_escape(f"{key}={value}")}"'))
    for argv in descriptor.exec_start_pre:
        lines.append(("ExecStartPre", _shell_line(descriptor.secrets_path, argv)))
    lines.append(("ExecStart", _shell_line(descriptor.secrets_path, descriptor.exec_start)))
    lines.append(("Restart", descriptor.restart.policy))
    lines.append(("RestartSec", str(descriptor.restart.delay_sec)))
    lines.append(("LimitNOFILE", str(descriptor.limits.nofile)))
    lines.append(("LimitNPROC", str(descriptor.limits.nproc)))
    lines.extend((key, _literal(value)) for key, value in descriptor.sandbox.directives())
    return lines


def render_unit(descriptor: ServiceDescriptor) -> str:
    """Render a complete ``wsgi-<name>.service`` unit file."""
    out = [
        "[Unit]",
        f"Description={descriptor.description or descriptor.name}",
        f"Wants={' '.join(descriptor.wants)}",
        f"After={' '.join(descriptor.after)}",
        "",
        "[Service]",
    ]
    out.extend(f"{key}={value}" for key, value in service_directives(descriptor))
    out.extend([
        "",
        "[Install]",
        f"WantedBy={' '.join(descriptor.wanted_by)}",
    ])
    return "\n".join(out) + "\n"


def unit_file_name(descriptor: ServiceDescriptor) -> str:
    return f"{descriptor.unit_name}.service"
