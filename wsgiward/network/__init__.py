from .policy import AddressFamily, NetworkPolicy, Rule
from .resolve import resolve

__all__ = ["AddressFamily", "NetworkPolicy", "Rule", "resolve"]
