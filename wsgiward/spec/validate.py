"""
Validation and normalization of declared application records.

Checks run in a fixed order and stop at the first violation. Batch-scoped
conflicts (names, bindings, users, databases) are tracked in a BatchState that
is only updated once a record has passed every check.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from wsgiward.errors import ValidationError
from wsgiward.network.policy import Rule
from wsgiward.sandbox import NETWORK_FIELDS, coerce_override, resolve_override_key
from .models import DEFAULT_PORT, DEFAULT_PROCESSES, DEFAULT_THREADS, SOCKET_NAME, ApplicationSpec, Binding

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
MODULE_RE = re.compile(r"^[A-Za-z_][\w.]*(:[A-Za-z_]\w*)?$")
DOTTED_RE = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)*$")
HOST_LABEL_RE = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
# Characters that systemd or the shell would split or expand inside a path
UNSAFE_PATH_RE = re.compile(r"[\s%\"\\\x00-\x1f\x7f]")

MIN_WORKERS = 1
MAX_WORKERS = 1024

KNOWN_KEYS = {
    "name", "user", "root", "module", "database", "keysFile", "staticFiles",
    "port", "socket", "allowedHosts", "processes", "threads", "hostName",
    "setupNginx", "isolateNetwork", "inbound", "django", "sandbox",
}
# Alternative spellings accepted in declarations
ALIASES = {"secretsFile": "keysFile", "exposeViaProxy": "setupNginx"}


@dataclass
class BatchState:
    """Claims accumulated while validating one batch."""
    runtime_dir: str = "/run"
    names: Dict[str, str] = field(default_factory=dict)
    bindings: Dict[str, str] = field(default_factory=dict)
    users: Dict[str, str] = field(default_factory=dict)
    databases: Dict[str, str] = field(default_factory=dict)

    def claim(self, spec: ApplicationSpec) -> None:
        self.names[spec.name] = spec.name
        self.bindings[spec.binding.key()] = spec.name
        self.users[spec.user] = spec.name
        self.databases[spec.database] = spec.name


def _canonical(raw: Mapping[str, Any], app: Optional[str]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key, value in raw.items():
        target = ALIASES.get(key, key)
        if target in data:
            raise ValidationError(app, key, f"given together with its alias {target}")
        data[target] = value
    return data


def _string(data: Mapping[str, Any], key: str, app: Optional[str], required: bool = False) -> Optional[str]:
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(app, key, "required field is missing")
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(app, key, "must be a non-empty string")
    return value.strip()


def _absolute_path(data: Mapping[str, Any], key: str, app: Optional[str], required: bool = False) -> Optional[str]:
    value = _string(data, key, app, required)
    if value is None:
        return None
    if not posixpath.isabs(value):
        raise ValidationError(app, key, f"must be an absolute path, got {value!r}")
    if UNSAFE_PATH_RE.search(value):
        raise ValidationError(app, key, f"must not contain whitespace, quotes, backslashes, "
                                        f"% or control characters: {value!r}")
    return posixpath.normpath(value)


def _flag(data: Mapping[str, Any], key: str, app: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValidationError(app, key, "must be true or false")
    return value


def _worker_count(data: Mapping[str, Any], key: str, default: int, app: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(app, key, "must be an integer")
    if not MIN_WORKERS <= value <= MAX_WORKERS:
        raise ValidationError(app, key, f"must be within [{MIN_WORKERS}, {MAX_WORKERS}], got {value}")
    return value


def is_valid_host_name(host: str) -> bool:
    if host == "localhost":
        return True
    if len(host) > 253:
        return False
    labels = host.rstrip(".").split(".")
    return all(HOST_LABEL_RE.match(label) for label in labels)


def _identity(data: Mapping[str, Any], default_name: Optional[str], batch: BatchState) -> Tuple[str, str]:
    name = data.get("name", default_name)
    if not isinstance(name, str) or not name:
        raise ValidationError(None, "name", "required field is missing")
    if not NAME_RE.match(name):
        raise ValidationError(name, "name", "must match [a-z_][a-z0-9_-]* and be at most 32 characters")
    if name in batch.names:
        raise ValidationError(name, "name", "declared more than once")

    user = data.get("user", name)
    if not isinstance(user, str) or not NAME_RE.match(user):
        raise ValidationError(name, "user", "must be a valid system user name")
    return name, user


def _django(data: Mapping[str, Any], root: str, app: str) -> Tuple[Optional[str], Optional[str]]:
    django = data.get("django")
    if django is None:
        return None, None
    if not isinstance(django, Mapping):
        raise ValidationError(app, "django", "must be a mapping")
    unknown = set(django) - {"settings", "manage"}
    if unknown:
        raise ValidationError(app, "django", f"unknown fields: {', '.join(sorted(unknown))}")
    settings = _string(django, "settings", app)
    if settings is None:
        return None, None
    if not DOTTED_RE.match(settings):
        raise ValidationError(app, "django.settings", f"not a dotted module path: {settings!r}")
    manage = _absolute_path(django, "manage", app) or posixpath.join(root, "manage.py")
    return settings, manage


def _binding(data: Mapping[str, Any], app: str, user: str, isolate: bool, batch: BatchState) -> Binding:
    port = data.get("port")
    socket = data.get("socket")
    if port is not None and socket is not None:
        raise ValidationError(app, "port", "port and socket are mutually exclusive")

    if port is not None:
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise ValidationError(app, "port", f"must be a TCP port number, got {port!r}")
        binding = Binding(port=port)
    elif socket is not None:
        binding = Binding(socket=_absolute_path(data, "socket", app))
    elif isolate:
        binding = Binding(socket=posixpath.join(batch.runtime_dir, user, SOCKET_NAME))
    else:
        binding = Binding(port=DEFAULT_PORT)

    owner = batch.bindings.get(binding.key())
    if owner is not None:
        raise ValidationError(app, "port" if binding.is_tcp else "socket",
                              f"binding {binding.key()} already claimed by {owner}")
    return binding


def _allowed_hosts(data: Mapping[str, Any], app: str) -> Tuple[str, ...]:
    hosts = data.get("allowedHosts")
    if hosts is None:
        return ("localhost",)
    if not isinstance(hosts, (list, tuple)):
        raise ValidationError(app, "allowedHosts", "must be a list of host names")
    if not hosts:
        return ("localhost",)
    seen: List[str] = []
    for host in hosts:
        if not isinstance(host, str) or not host or any(c.isspace() or c == "," for c in host):
            raise ValidationError(app, "allowedHosts", f"invalid entry {host!r}")
        if host not in seen:
            seen.append(host)
    return tuple(seen)


def _inbound(data: Mapping[str, Any], app: str) -> Optional[Rule]:
    value = data.get("inbound")
    if value is None:
        return None
    try:
        return Rule(value)
    except ValueError:
        choices = ", ".join(r.value for r in Rule)
        raise ValidationError(app, "inbound", f"must be one of {choices}, got {value!r}")


def _sandbox(data: Mapping[str, Any], app: str) -> Tuple[Tuple[str, Any], ...]:
    sandbox = data.get("sandbox")
    if sandbox is None:
        return ()
    if not isinstance(sandbox, Mapping):
        raise ValidationError(app, "sandbox", "must be a mapping of directive to value")
    overrides: Dict[str, Any] = {}
    for key, value in sandbox.items():
        name = resolve_override_key(key)
        if name is None:
            raise ValidationError(app, f"sandbox.{key}", "unknown sandbox directive")
        if name in NETWORK_FIELDS:
            raise ValidationError(app, f"sandbox.{key}",
                                  "network directives derive from allowedHosts/isolateNetwork; use inbound")
        try:
            overrides[name] = coerce_override(name, value)
        except ValueError as e:
            raise ValidationError(app, f"sandbox.{key}", str(e))
    return tuple(sorted(overrides.items()))


def validate(raw: Mapping[str, Any], batch: BatchState, default_name: Optional[str] = None) -> ApplicationSpec:
    """
    Validate one declared application against the batch seen so far.

    Args:
        raw: Declared record (camelCase keys)
        batch: Claims of previously accepted records; updated on success
        default_name: Name to use when the record has no ``name`` key

    Returns:
        Normalized, immutable ApplicationSpec

    Raises:
        ValidationError: On the first violated check
    """
    if not isinstance(raw, Mapping):
        raise ValidationError(default_name, "application", "must be a mapping")
    guess = raw.get("name", default_name)
    data = _canonical(raw, guess if isinstance(guess, str) else None)

    # 1) identity
    name, user = _identity(data, default_name, batch)

    # 2) required fields
    root = _absolute_path(data, "root", name, required=True)
    database = _string(data, "database", name) or name
    django_settings, manage_script = _django(data, root, name)
    module = _string(data, "module", name)
    if module is None:
        if django_settings is None:
            raise ValidationError(name, "module", "required field is missing")
        module = f"{name}.wsgi"
    if not MODULE_RE.match(module):
        raise ValidationError(name, "module", f"not an importable entry point: {module!r}")
    secrets_file = _absolute_path(data, "keysFile", name, required=True)

    # 3) binding and batch claims
    isolate = _flag(data, "isolateNetwork", name)
    binding = _binding(data, name, user, isolate, batch)
    if user in batch.users:
        raise ValidationError(name, "user", f"user {user} already used by {batch.users[user]}")
    if database in batch.databases:
        raise ValidationError(name, "database", f"database {database} already used by {batch.databases[database]}")

    # 4) isolation
    inbound = _inbound(data, name)
    if isolate and binding.is_tcp:
        raise ValidationError(name, "isolateNetwork", "network isolation cannot be combined with a TCP binding")
    if isolate and inbound is Rule.ALLOW_ALL:
        raise ValidationError(name, "inbound", "allow-all is not permitted for an isolated application")

    # 5) worker counts
    processes = _worker_count(data, "processes", DEFAULT_PROCESSES, name)
    threads = _worker_count(data, "threads", DEFAULT_THREADS, name)

    # 6) host names
    host_name = _string(data, "hostName", name) or "localhost"
    if not is_valid_host_name(host_name):
        raise ValidationError(name, "hostName", f"not a valid host name: {host_name!r}")
    allowed_hosts = _allowed_hosts(data, name)

    # 7) proxy and sandbox
    static_files = _absolute_path(data, "staticFiles", name)
    expose = _flag(data, "setupNginx", name)
    if expose and static_files is None:
        raise ValidationError(name, "staticFiles", "required when the application is exposed via the proxy")
    overrides = _sandbox(data, name)
    unknown = sorted(str(key) for key in data if key not in KNOWN_KEYS)
    if unknown:
        raise ValidationError(name, unknown[0], "unknown field")

    spec = ApplicationSpec(
        name=name,
        user=user,
        root=root,
        module=module,
        django_settings=django_settings,
        manage_script=manage_script,
        database=database,
        secrets_file=secrets_file,
        static_files=static_files,
        binding=binding,
        allowed_hosts=allowed_hosts,
        host_name=host_name,
        expose_via_proxy=expose,
        isolate_network=isolate,
        inbound=inbound,
        processes=processes,
        threads=threads,
        sandbox_overrides=overrides,
    )
    batch.claim(spec)
    logger.debug(f"Validated application {name} (user={user}, binding={binding.key()})")
    return spec


def validate_batch(raws: Iterable[Any], runtime_dir: str = "/run") -> List[ApplicationSpec]:
    """
    Validate a whole declaration as one batch. All or nothing.

    Items may be plain records or ``(default_name, record)`` pairs as produced
    by the mapping form of a declaration file.
    """
    batch = BatchState(runtime_dir=runtime_dir)
    specs: List[ApplicationSpec] = []
    for item in raws:
        if isinstance(item, tuple):
            default_name, raw = item
        else:
            default_name, raw = None, item
        specs.append(validate(raw, batch, default_name))
    return specs
