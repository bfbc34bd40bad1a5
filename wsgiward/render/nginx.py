from __future__ import annotations

from typing import Dict, Optional

from wsgiward.descriptor.models import ServiceDescriptor
from wsgiward.registry import Registry

# Config inspired by https://docs.gunicorn.org/en/latest/deploy.html
PROXY_SETTINGS = [
    "proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
    "proxy_set_header X-Forwarded-Proto $scheme;",
    "proxy_set_header Host $host;",
    "proxy_redirect off;",
    "client_max_body_size 4G;",
]


def render_upstream(descriptor: ServiceDescriptor) -> str:
    spec = descriptor.spec
    return (
        f"upstream {spec.upstream_name} {{\n"
        f"    server {spec.binding.upstream()};\n"
        "}\n"
    )


def render_server(descriptor: ServiceDescriptor, listen: int = 80) -> str:
    """Virtual host: serve static files, fall back to the application."""
    spec = descriptor.spec
    proxy = "\n".join(f"        {line}" for line in PROXY_SETTINGS)
    return (
        "server {\n"
        f"    listen {listen};\n"
        f"    server_name {spec.host_name};\n"
        f"    root {spec.static_files};\n"
        "\n"
        "    location / {\n"
        "        try_files $uri @proxy_to_app;\n"
        "    }\n"
        "\n"
        "    location @proxy_to_app {\n"
        f"        proxy_pass http://{spec.upstream_name};\n"
        f"{proxy}\n"
        "    }\n"
        "}\n"
    )


def render_site(descriptor: ServiceDescriptor) -> Optional[str]:
    """Upstream plus server block, or None when the application is not exposed."""
    if not descriptor.spec.expose_via_proxy:
        return None
    return render_upstream(descriptor) + "\n" + render_server(descriptor)


def render_sites(registry: Registry) -> Dict[str, str]:
    """File name -> config for every exposed application."""
    sites: Dict[str, str] = {}
    for descriptor in registry.descriptors():
        site = render_site(descriptor)
        if site is not None:
            sites[f"{descriptor.name}.conf"] = site
    return sites
