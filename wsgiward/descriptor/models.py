from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from wsgiward.network.policy import NetworkPolicy
from wsgiward.sandbox import SandboxPolicy
from wsgiward.secrets.models import StagedSecret
from wsgiward.spec.models import ApplicationSpec


@dataclass(frozen=True)
class ResourceLimits:
    nofile: int
    nproc: int


@dataclass(frozen=True)
class RestartPolicy:
    policy: str = "always"
    delay_sec: int = 5


@dataclass(frozen=True)
class ServiceDescriptor:
    """Everything a supervisor needs to start and supervise one application."""
    spec: ApplicationSpec
    secret: StagedSecret
    network: NetworkPolicy
    sandbox: SandboxPolicy
    limits: ResourceLimits
    restart: RestartPolicy

    # Process
    exec_start: Tuple[str, ...]
    exec_start_pre: Tuple[Tuple[str, ...], ...]
    environment_pairs: Tuple[Tuple[str, str], ...]
    net_bind_capability: bool

    # Ordering
    wants: Tuple[str, ...] = ("postgresql.service",)
    after: Tuple[str, ...] = ("network.target", "postgresql.service")
    wanted_by: Tuple[str, ...] = ("multi-user.target",)

    description: Optional[str] = field(default=None)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def unit_name(self) -> str:
        return self.spec.unit_name

    @property
    def user(self) -> str:
        return self.spec.user

    @property
    def group(self) -> str:
        return self.spec.group

    @property
    def working_directory(self) -> str:
        return self.spec.root

    @property
    def secrets_path(self) -> str:
        return self.secret.location

    @property
    def environment(self) -> Dict[str, str]:
        return dict(self.environment_pairs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "unit_name": self.unit_name,
            "description": self.description,
            "spec": self.spec.to_dict(),
            "secret": self.secret.to_dict(),
            "network": self.network.to_dict(),
            "sandbox": self.sandbox.to_dict(),
            "limits": {"nofile": self.limits.nofile, "nproc": self.limits.nproc},
            "restart": {"policy": self.restart.policy, "delay_sec": self.restart.delay_sec},
            "exec_start": list(self.exec_start),
            "exec_start_pre": [list(cmd) for cmd in self.exec_start_pre],
            "environment": self.environment,
            "net_bind_capability": self.net_bind_capability,
            "wants": list(self.wants),
            "after": list(self.after),
            "wanted_by": list(self.wanted_by),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceDescriptor":
        return cls(
            spec=ApplicationSpec.from_dict(data["spec"]),
            secret=StagedSecret.from_dict(data["secret"]),
            network=NetworkPolicy.from_dict(data["network"]),
            sandbox=SandboxPolicy.from_dict(data["sandbox"]),
            limits=ResourceLimits(**data["limits"]),
            restart=RestartPolicy(**data["restart"]),
            exec_start=tuple(data["exec_start"]),
            exec_start_pre=tuple(tuple(cmd) for cmd in data["exec_start_pre"]),
            environment_pairs=tuple(data["environment"].items()),
            net_bind_capability=data["net_bind_capability"],
            wants=tuple(data["wants"]),
            after=tuple(data["after"]),
            wanted_by=tuple(data["wanted_by"]),
            description=data.get("description"),
        )
