"""
Renderers producing inputs for external collaborators: systemd, nginx,
PostgreSQL and sysusers.d.
"""

import json
from pathlib import Path
from typing import Dict

from wsgiward.registry import Registry
from . import nginx, postgres, scripts, systemd, sysusers


def render_all(registry: Registry, python: str = "python3") -> Dict[str, str]:
    """Relative path -> content for every artifact of a registry."""
    files: Dict[str, str] = {}
    for descriptor in registry.descriptors():
        files[f"systemd/{systemd.unit_file_name(descriptor)}"] = systemd.render_unit(descriptor)
        manage = scripts.render_manage_script(descriptor, python=python)
        if manage is not None:
            files[f"bin/{scripts.manage_script_name(descriptor)}"] = manage
    for name, site in nginx.render_sites(registry).items():
        files[f"nginx/{name}"] = site
    files["sysusers.d/wsgiward.conf"] = sysusers.render(registry)
    files["postgresql/ensure.json"] = json.dumps(postgres.ensure_plan(registry), indent=2) + "\n"
    return files


def write_all(registry: Registry, out_dir: Path, python: str = "python3") -> Dict[str, Path]:
    written: Dict[str, Path] = {}
    for rel, content in render_all(registry, python=python).items():
        target = out_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        if rel.startswith("bin/"):
            target.chmod(0o755)
        written[rel] = target
    return written


__all__ = ["nginx", "postgres", "scripts", "systemd", "sysusers", "render_all", "write_all"]
