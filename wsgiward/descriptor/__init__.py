"""
Supervisor-ready service descriptors.
"""

from .models import ResourceLimits, RestartPolicy, ServiceDescriptor
from .builder import build

__all__ = ["ResourceLimits", "RestartPolicy", "ServiceDescriptor", "build"]
