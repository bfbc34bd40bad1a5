"""
Registry of service descriptors.

A Registry is an immutable snapshot. The orchestrator replaces it wholesale on
every successful reconcile; readers holding an old snapshot are unaffected.
"""

from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional

from .descriptor.models import ServiceDescriptor


class Registry:
    """Read-only mapping of application name to ServiceDescriptor."""

    def __init__(self, descriptors: Iterable[ServiceDescriptor] = ()):
        entries: Dict[str, ServiceDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in entries:
                raise ValueError(f"duplicate application in registry: {descriptor.name}")
            entries[descriptor.name] = descriptor
        self._entries: Mapping[str, ServiceDescriptor] = MappingProxyType(entries)

    def get(self, name: str) -> Optional[ServiceDescriptor]:
        return self._entries.get(name)

    def names(self) -> FrozenSet[str]:
        return frozenset(self._entries)

    def descriptors(self) -> List[ServiceDescriptor]:
        """Descriptors sorted by name."""
        return [self._entries[name] for name in sorted(self._entries)]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def removed_since(self, previous: "Registry") -> List[ServiceDescriptor]:
        """Descriptors present in ``previous`` but absent here."""
        return [d for d in previous.descriptors() if d.name not in self._entries]

    def to_snapshot(self) -> Dict[str, Any]:
        return {"applications": [d.to_dict() for d in self.descriptors()]}

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "Registry":
        return cls(ServiceDescriptor.from_dict(item) for item in data.get("applications", []))


EMPTY = Registry()
