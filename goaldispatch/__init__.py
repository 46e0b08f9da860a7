"""
goaldispatch - Delivery goal dispatch layer

Verifies signed goal state, schedules goals as isolated Kubernetes Jobs and
caches build artifacts between goal executions.
"""

__version__ = "0.1.0"


__all__ = ["DispatchConfig", "load_config", "get_goaldispatch_home"]

from .config import DispatchConfig, load_config, get_goaldispatch_home
