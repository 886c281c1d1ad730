"""Core module providing the run configuration model and error taxonomy.

This module contains the validated ``RunConfiguration`` data holder, the
custom exception hierarchy, and service settings loading.
"""

from .config import Pattern, RunConfiguration
from .exceptions import (
    ConfigurationError,
    ConflictError,
    InternalSchedulingFault,
    TrafficShaperError,
    TransientSendError,
)

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "InternalSchedulingFault",
    "Pattern",
    "RunConfiguration",
    "TrafficShaperError",
    "TransientSendError",
]
