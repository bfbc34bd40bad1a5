"""
Service descriptor builder.

Merge order is fixed: spec -> network policy -> base sandbox table ->
operator overrides. Inputs are validated upstream; any inconsistency here is a
defect and raises FatalError.
"""

from __future__ import annotations

import logging
import posixpath
from typing import List, Optional, Tuple

from wsgiward.config import Settings
from wsgiward.errors import FatalError
from wsgiward.network.policy import AddressFamily, NetworkPolicy, Rule
from wsgiward.sandbox import base_policy, layer
from wsgiward.secrets.models import StagedSecret
from wsgiward.spec.models import ApplicationSpec
from .models import ResourceLimits, RestartPolicy, ServiceDescriptor

logger = logging.getLogger(__name__)

PRIVILEGED_PORT_MAX = 1024
NET_BIND_CAPABILITY = "CAP_NET_BIND_SERVICE"
LIMIT_CEILING = 99999


def build_environment(spec: ApplicationSpec, secret: StagedSecret) -> List[Tuple[str, str]]:
    """
    Environment handed to the application process.

    Only the path of the staged secrets file is included; the process sources
    it itself at startup.
    """
    env: List[Tuple[str, str]] = []
    if spec.django_settings:
        env.append(("DJANGO_SETTINGS_MODULE", spec.django_settings))
    env.append(("WSGI_MODULE", spec.module))
    env.append(("ALLOWED_HOSTS", ",".join(spec.allowed_hosts)))
    env.append(("DB_NAME", spec.database))
    if spec.static_files:
        env.append(("STATIC_ROOT", spec.static_files))
    env.append(("WSGI_SECRETS_FILE", secret.location))
    return env


def derive_limits(processes: int, threads: int) -> ResourceLimits:
    """Open-file and task limits scaled with the worker pool."""
    workers = processes * threads
    nofile = min(LIMIT_CEILING, max(1024, 1024 + workers * 64))
    # gunicorn threads count against NPROC; one extra per process for the arbiter/heartbeat
    nproc = min(LIMIT_CEILING, max(64, 64 + processes * (threads + 1) * 4))
    return ResourceLimits(nofile=nofile, nproc=nproc)


def needs_net_bind(spec: ApplicationSpec) -> bool:
    return spec.binding.is_tcp and spec.binding.port <= PRIVILEGED_PORT_MAX


def gunicorn_command(spec: ApplicationSpec, settings: Settings) -> Tuple[str, ...]:
    return (
        settings.gunicorn,
        spec.module,
        "--pythonpath", spec.root,
        "-b", spec.binding.address(),
        f"--workers={spec.processes}",
        f"--threads={spec.threads}",
    )


def _check_invariants(spec: ApplicationSpec, secret: StagedSecret, policy: NetworkPolicy) -> None:
    if secret.user != spec.user:
        raise FatalError(f"{spec.name}: secret staged for {secret.user}, expected {spec.user}")
    if spec.isolate_network:
        if spec.binding.is_tcp:
            raise FatalError(f"{spec.name}: isolated application reached the builder with a TCP binding")
        if policy.outbound is not Rule.DENY_ALL or policy.address_families != frozenset({AddressFamily.UNIX}):
            raise FatalError(f"{spec.name}: network policy is weaker than isolation requires")


def build(spec: ApplicationSpec, secret: StagedSecret, policy: NetworkPolicy,
          settings: Optional[Settings] = None) -> ServiceDescriptor:
    """
    Compose a supervisor-ready descriptor. Performs no I/O.

    Raises:
        FatalError: If the inputs violate an invariant validation guarantees
    """
    settings = settings or Settings()
    _check_invariants(spec, secret, policy)

    environment = build_environment(spec, secret)
    exec_start = gunicorn_command(spec, settings)
    exec_start_pre: Tuple[Tuple[str, ...], ...] = ()
    if spec.is_django:
        exec_start_pre = ((settings.python, spec.manage_script, "migrate", "--noinput"),)

    net_bind = needs_net_bind(spec)
    capabilities = (NET_BIND_CAPABILITY,) if net_bind else ()

    read_only = [spec.root]
    if spec.static_files:
        read_only.append(spec.static_files)
    base = base_policy(
        policy,
        read_write_paths=[posixpath.dirname(secret.location)],
        read_only_paths=read_only,
        capabilities=capabilities,
    )
    try:
        sandbox = layer(base, spec.overrides())
    except ValueError as e:
        raise FatalError(f"{spec.name}: {e}") from e

    descriptor = ServiceDescriptor(
        spec=spec,
        secret=secret,
        network=policy,
        sandbox=sandbox,
        limits=derive_limits(spec.processes, spec.threads),
        restart=RestartPolicy(policy=settings.restart, delay_sec=settings.restart_sec),
        exec_start=exec_start,
        exec_start_pre=exec_start_pre,
        environment_pairs=tuple(environment),
        net_bind_capability=net_bind,
        description=f"{spec.name} wsgi application",
    )
    logger.debug(f"Built descriptor for {spec.name}: {descriptor.unit_name}")
    return descriptor
