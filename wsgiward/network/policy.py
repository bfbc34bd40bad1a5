from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Tuple


class AddressFamily(Enum):
    """Socket address families an application may use."""
    UNIX = "AF_UNIX"
    IPV4 = "AF_INET"
    IPV6 = "AF_INET6"


class Rule(Enum):
    """Inbound or outbound traffic rule."""
    ALLOW_ALL = "allow-all"
    ALLOW_LOCAL_ONLY = "allow-local-only"
    DENY_ALL = "deny-all"


ALL_FAMILIES: FrozenSet[AddressFamily] = frozenset(AddressFamily)


@dataclass(frozen=True)
class NetworkPolicy:
    address_families: FrozenSet[AddressFamily]
    inbound: Rule
    outbound: Rule
    rationale: Tuple[str, ...] = field(default=(), compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address_families": sorted(f.value for f in self.address_families),
            "inbound": self.inbound.value,
            "outbound": self.outbound.value,
            "rationale": list(self.rationale),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkPolicy":
        return cls(
            address_families=frozenset(AddressFamily(f) for f in data["address_families"]),
            inbound=Rule(data["inbound"]),
            outbound=Rule(data["outbound"]),
            rationale=tuple(data.get("rationale", ())),
        )
