from __future__ import annotations

from typing import TYPE_CHECKING, List

from .policy import ALL_FAMILIES, AddressFamily, NetworkPolicy, Rule

if TYPE_CHECKING:
    from wsgiward.spec.models import ApplicationSpec


def is_local_only(allowed_hosts) -> bool:
    return all(host == "localhost" for host in allowed_hosts)


def resolve(spec: ApplicationSpec) -> NetworkPolicy:
    """
    Derive the network policy of one application.

    Pure: depends only on allowed_hosts, binding, isolate_network and the
    explicit inbound override.
    """
    rationale: List[str] = []

    if spec.isolate_network:
        # Inet families are removed entirely; an explicit inbound rule may only tighten
        rationale.append(f"isolated network; binding {spec.binding.address()} must be a unix socket")
        return NetworkPolicy(
            address_families=frozenset({AddressFamily.UNIX}),
            inbound=spec.inbound or Rule.ALLOW_LOCAL_ONLY,
            outbound=Rule.DENY_ALL,
            rationale=tuple(rationale),
        )

    if spec.inbound is not None:
        inbound = spec.inbound
        rationale.append(f"explicit inbound override: {inbound.value}")
    elif is_local_only(spec.allowed_hosts):
        inbound = Rule.ALLOW_LOCAL_ONLY
        rationale.append("allowed hosts are localhost only")
    else:
        inbound = Rule.ALLOW_ALL
        public = [h for h in spec.allowed_hosts if h != "localhost"]
        rationale.append(f"public allowed hosts: {', '.join(public)}")

    return NetworkPolicy(
        address_families=ALL_FAMILIES,
        inbound=inbound,
        outbound=Rule.ALLOW_ALL,
        rationale=tuple(rationale),
    )
