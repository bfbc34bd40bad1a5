"""
Declared application records: models and batch validation.
"""

from .models import ApplicationSpec, Binding
from .validate import BatchState, validate, validate_batch

__all__ = ["ApplicationSpec", "Binding", "BatchState", "validate", "validate_batch"]
