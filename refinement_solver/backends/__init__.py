"""
Backend implementations for different linear algebra libraries.
"""

from .base import Backend, BackendRegistry, Factorization, Workspace
from .scipy_backend import SciPyBackend
from .cupy_backend import CuPyBackend, CUPY_AVAILABLE, gpu_device_count
from .hybrid_backend import HybridBackend, pivots_to_permutation

__all__ = [
    "Backend",
    "BackendRegistry",
    "Factorization",
    "Workspace",
    "SciPyBackend",
    "CuPyBackend",
    "HybridBackend",
    "CUPY_AVAILABLE",
    "gpu_device_count",
    "pivots_to_permutation",
]

# GPU backends are always registered; they raise BackendUnavailableError
# on construction when CuPy or a device is missing.
BackendRegistry.register("scipy", SciPyBackend)
BackendRegistry.register("cupy", CuPyBackend)
BackendRegistry.register("hybrid", HybridBackend)
