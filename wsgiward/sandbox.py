"""
Layered sandbox policy for supervised application processes.

The base table is computed per application; an override map declared by the
operator is layered on top of it with override-wins-base semantics. Network
directives are derived from the resolved NetworkPolicy and cannot be
overridden.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .network.policy import AddressFamily, NetworkPolicy, Rule


def _directive(name: str, network: bool = False) -> Dict[str, Any]:
    return {"directive": name, "network": network}


@dataclass(frozen=True)
class SandboxPolicy:
    """Typed systemd sandboxing table, one field per directive."""
    # Security
    protect_proc: str = field(default="invisible", metadata=_directive("ProtectProc"))
    proc_subset: str = field(default="pid", metadata=_directive("ProcSubset"))
    no_new_privileges: bool = field(default=True, metadata=_directive("NoNewPrivileges"))
    ambient_capabilities: Tuple[str, ...] = field(default=(), metadata=_directive("AmbientCapabilities"))
    capability_bounding_set: Tuple[str, ...] = field(default=(), metadata=_directive("CapabilityBoundingSet"))
    umask: str = field(default="0066", metadata=_directive("UMask"))

    # Sandboxing
    protect_system: str = field(default="strict", metadata=_directive("ProtectSystem"))
    protect_home: bool = field(default=True, metadata=_directive("ProtectHome"))
    private_tmp: bool = field(default=True, metadata=_directive("PrivateTmp"))
    private_devices: bool = field(default=True, metadata=_directive("PrivateDevices"))
    private_users: bool = field(default=True, metadata=_directive("PrivateUsers"))
    device_policy: str = field(default="closed", metadata=_directive("DevicePolicy"))
    protect_hostname: bool = field(default=True, metadata=_directive("ProtectHostname"))
    protect_clock: bool = field(default=True, metadata=_directive("ProtectClock"))
    protect_kernel_tunables: bool = field(default=True, metadata=_directive("ProtectKernelTunables"))
    protect_kernel_modules: bool = field(default=True, metadata=_directive("ProtectKernelModules"))
    protect_kernel_logs: bool = field(default=True, metadata=_directive("ProtectKernelLogs"))
    protect_control_groups: bool = field(default=True, metadata=_directive("ProtectControlGroups"))
    restrict_namespaces: bool = field(default=True, metadata=_directive("RestrictNamespaces"))
    lock_personality: bool = field(default=True, metadata=_directive("LockPersonality"))
    memory_deny_write_execute: bool = field(default=True, metadata=_directive("MemoryDenyWriteExecute"))
    restrict_realtime: bool = field(default=True, metadata=_directive("RestrictRealtime"))
    restrict_suid_sgid: bool = field(default=True, metadata=_directive("RestrictSUIDSGID"))
    remove_ipc: bool = field(default=True, metadata=_directive("RemoveIPC"))
    private_mounts: bool = field(default=True, metadata=_directive("PrivateMounts"))
    read_write_paths: Tuple[str, ...] = field(default=(), metadata=_directive("ReadWritePaths"))
    read_only_paths: Tuple[str, ...] = field(default=(), metadata=_directive("ReadOnlyPaths"))

    # System call architecture
    system_call_architectures: str = field(default="native", metadata=_directive("SystemCallArchitectures"))
    system_call_filter: Tuple[str, ...] = field(
        default=("@system-service", "~@resources"), metadata=_directive("SystemCallFilter")
    )
    system_call_error_number: str = field(default="EPERM", metadata=_directive("SystemCallErrorNumber"))

    # Network, derived from NetworkPolicy only
    restrict_address_families: Tuple[str, ...] = field(
        default=("AF_UNIX", "AF_INET", "AF_INET6"), metadata=_directive("RestrictAddressFamilies", network=True)
    )
    ip_address_allow: Tuple[str, ...] = field(default=(), metadata=_directive("IPAddressAllow", network=True))
    ip_address_deny: Tuple[str, ...] = field(default=(), metadata=_directive("IPAddressDeny", network=True))
    private_network: bool = field(default=False, metadata=_directive("PrivateNetwork", network=True))

    def directives(self) -> List[Tuple[str, str]]:
        """Render as ordered (directive, value) pairs, skipping empty IP lists."""
        rendered: List[Tuple[str, str]] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in ("ip_address_allow", "ip_address_deny") and not value:
                continue
            rendered.append((f.metadata["directive"], _render_value(value)))
        return rendered

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _jsonable(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SandboxPolicy":
        kwargs = {}
        for f in fields(cls):
            if f.name in data:
                value = data[f.name]
                kwargs[f.name] = tuple(value) if isinstance(value, list) else value
        return cls(**kwargs)


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, tuple):
        return " ".join(value)
    return str(value)


def _jsonable(value: Any) -> Any:
    return list(value) if isinstance(value, tuple) else value


_FIELDS = {f.name: f for f in fields(SandboxPolicy)}
_DIRECTIVES = {f.metadata["directive"]: f.name for f in fields(SandboxPolicy)}
NETWORK_FIELDS = frozenset(f.name for f in fields(SandboxPolicy) if f.metadata["network"])


def resolve_override_key(key: str) -> Optional[str]:
    """Map a directive name (``ProtectHome``) or field name (``protect_home``) to a field name."""
    if key in _FIELDS:
        return key
    return _DIRECTIVES.get(key)


def coerce_override(name: str, value: Any) -> Any:
    """
    Coerce one override value to the type of its field.

    Raises:
        ValueError: If the value does not fit the field
    """
    default = _FIELDS[name].default
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"expected a boolean, got {value!r}")
        return value
    if isinstance(default, tuple):
        if isinstance(value, str):
            return tuple(value.split())
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return tuple(value)
        raise ValueError(f"expected a list of strings, got {value!r}")
    if not isinstance(value, str) or not value:
        raise ValueError(f"expected a non-empty string, got {value!r}")
    return value


def network_directives(policy: NetworkPolicy) -> Dict[str, Any]:
    """Sandbox fields implementing a resolved NetworkPolicy."""
    families = tuple(family.value for family in AddressFamily if family in policy.address_families)
    values: Dict[str, Any] = {"restrict_address_families": families}
    if policy.inbound is Rule.ALLOW_LOCAL_ONLY:
        # Allow only local connections if the app binds localhost only
        values["ip_address_allow"] = ("localhost",)
        values["ip_address_deny"] = ("any",)
    elif policy.inbound is Rule.DENY_ALL:
        values["ip_address_deny"] = ("any",)
    if policy.outbound is Rule.DENY_ALL:
        values["private_network"] = True
    return values


def base_policy(
    network: NetworkPolicy,
    read_write_paths: Iterable[str],
    read_only_paths: Iterable[str],
    capabilities: Iterable[str] = (),
) -> SandboxPolicy:
    """Base table for one application before operator overrides."""
    caps = tuple(capabilities)
    return SandboxPolicy(
        ambient_capabilities=caps,
        capability_bounding_set=caps,
        read_write_paths=tuple(read_write_paths),
        read_only_paths=tuple(read_only_paths),
        **network_directives(network),
    )


def layer(base: SandboxPolicy, overrides: Mapping[str, Any]) -> SandboxPolicy:
    """
    Merge an override map over a base policy; override wins.

    Keys must already be normalized field names. Network fields are refused so
    no override can weaken the resolved network policy.
    """
    blocked = sorted(set(overrides) & NETWORK_FIELDS)
    if blocked:
        raise ValueError(f"network directives cannot be overridden: {', '.join(blocked)}")
    unknown = sorted(set(overrides) - set(_FIELDS))
    if unknown:
        raise ValueError(f"unknown sandbox fields: {', '.join(unknown)}")
    return replace(base, **dict(overrides))
