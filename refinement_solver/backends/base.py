"""
Base backend interface for dense LU refinement.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Any, Dict, List

import numpy as np

from ..exceptions import BackendMismatchError, BackendUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class Factorization:
    """
    LU factorization produced by a backend.

    Attributes
    ----------
    lu : array
        Combined L/U factors (unit lower triangle implied), backend storage
    piv : array
        Zero-based LAPACK pivot indices of length n; row i was interchanged
        with row piv[i]
    n : int
        Matrix dimension
    backend_name : str
        Name of the backend that produced it
    permutation : array, optional
        Row permutation equivalent to piv, for backends that apply the
        interchanges themselves
    """
    lu: Any
    piv: Any
    n: int
    backend_name: str
    permutation: Any = None


class Workspace:
    """
    Handles acquired by one solve.

    Every matrix, vector and factorization created through a workspace is
    released together when it is closed, which happens on every exit path
    when used as a context manager.
    """

    def __init__(self, backend: "Backend"):
        self.backend = backend
        self._handles: List[Any] = []
        self.closed = False

    def _track(self, handle: Any) -> Any:
        if self.closed:
            raise RuntimeError("Workspace is closed")
        self._handles.append(handle)
        return handle

    def matrix(self, values: np.ndarray, n: int) -> Any:
        """Upload a flat column-major matrix."""
        return self._track(self.backend.upload_matrix(values, n))

    def vector(self, values: np.ndarray) -> Any:
        """Upload a vector."""
        return self._track(self.backend.upload_vector(values))

    def scratch(self, n: int) -> Any:
        """Allocate an uninitialized vector of length n."""
        return self._track(self.backend.allocate_vector(n))

    def factorize(self, A: Any) -> Factorization:
        """Factorize A and keep the result for release."""
        return self._track(self.backend.factorize(A))

    def close(self):
        if self.closed:
            return
        handles, self._handles = self._handles, []
        self.closed = True
        self.backend.release(handles)

    def __len__(self):
        return len(self._handles)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class Backend(ABC):
    """
    Abstract base class for dense linear algebra backends.

    Each backend implements the LU refinement primitives using a specific
    library and memory placement (host, device, or hybrid). Operands are
    backend-specific handles created by ``upload_matrix``,
    ``upload_vector`` and ``allocate_vector``; the refinement engine never
    looks inside them.
    """

    name = "base"
    placement = "host"

    def __init__(self, device_id: Optional[int] = None):
        """
        Initialize the backend.

        Parameters
        ----------
        device_id : int, optional
            GPU device ID (for GPU backends)
        """
        self.device_id = device_id

    def workspace(self) -> Workspace:
        """Create a workspace scoped to one solve."""
        return Workspace(self)

    # -- handle management ------------------------------------------------

    @abstractmethod
    def upload_matrix(self, values: np.ndarray, n: int) -> Any:
        """
        Make a backend matrix from flat column-major host storage.

        Parameters
        ----------
        values : numpy.ndarray
            Float64 array of length n**2, column index varying slowest
        n : int
            Matrix dimension

        Returns
        -------
        A : handle
            Backend matrix; read-only for the rest of the solve
        """
        pass

    @abstractmethod
    def upload_vector(self, values: np.ndarray) -> Any:
        """Make a backend vector holding a copy of ``values``."""
        pass

    @abstractmethod
    def allocate_vector(self, n: int) -> Any:
        """Allocate a backend vector of length n."""
        pass

    @abstractmethod
    def download_vector(self, handle: Any, out: np.ndarray) -> np.ndarray:
        """Copy a backend vector into the host array ``out``."""
        pass

    def release(self, handles: List[Any]):
        """Release handles acquired for a solve. Host memory needs nothing."""
        handles.clear()

    # -- numerical primitives ---------------------------------------------

    @abstractmethod
    def factorize(self, A: Any) -> Factorization:
        """
        LU-factorize a private copy of A.

        Raises
        ------
        SingularMatrixError
            If the factorization reports a positive diagnostic code
        """
        pass

    @abstractmethod
    def solve(self, factorization: Factorization, rhs: Any) -> Any:
        """
        Solve ``A y = rhs`` in place using ``factorization``.

        Raises
        ------
        SolveError
            If the triangular solve reports a non-zero diagnostic code
        BackendMismatchError
            If ``factorization`` was made by another backend
        """
        pass

    @abstractmethod
    def residual(self, A: Any, x: Any, b: Any, out: Any) -> Any:
        """Compute ``out = b - A x``."""
        pass

    @abstractmethod
    def norm2(self, v: Any) -> float:
        """Euclidean norm of ``v`` as a host float."""
        pass

    @abstractmethod
    def axpy(self, alpha: float, x: Any, y: Any) -> Any:
        """Compute ``y += alpha * x`` in place."""
        pass

    @abstractmethod
    def copy(self, src: Any, dst: Any) -> Any:
        """Copy ``src`` into ``dst``."""
        pass

    def _check_factorization(self, factorization: Factorization):
        if factorization.backend_name != self.name:
            raise BackendMismatchError(
                f"Factorization from {factorization.backend_name} backend "
                f"cannot be used by {self.name} backend",
                expected=factorization.backend_name,
                actual=self.name,
            )

    def __repr__(self):
        if self.device_id is None:
            return f"{type(self).__name__}()"
        return f"{type(self).__name__}(device_id={self.device_id})"


class BackendRegistry:
    """Registry for available backends."""

    _backends: Dict[str, type] = {}

    @classmethod
    def register(cls, name: str, backend_class: type):
        """Register a backend class."""
        cls._backends[name] = backend_class

    @classmethod
    def get_backend(cls, name: str, **kwargs) -> Backend:
        """Get an instance of a backend."""
        if name not in cls._backends:
            raise ValueError(f"Unknown backend: {name}. Available: {list(cls._backends.keys())}")
        return cls._backends[name](**kwargs)

    @classmethod
    def list_backends(cls) -> list[str]:
        """List all registered backends."""
        return list(cls._backends.keys())

    @classmethod
    def available_backends(cls) -> list[str]:
        """List registered backends that can be instantiated here."""
        available = []
        for name in cls._backends:
            try:
                cls.get_backend(name)
            except BackendUnavailableError as e:
                logger.debug("Backend %s unavailable: %s", name, e)
                continue
            available.append(name)
        return available

    @classmethod
    def auto_select(cls, prefer_gpu: bool = True) -> str:
        """
        Automatically select the best available backend.

        Parameters
        ----------
        prefer_gpu : bool
            Prefer GPU backends if available

        Returns
        -------
        backend_name : str
            Name of the selected backend
        """
        candidates = ["cupy", "hybrid", "scipy"] if prefer_gpu else ["scipy"]
        for backend in candidates:
            if backend not in cls._backends:
                continue
            try:
                # Try to instantiate to check availability
                cls.get_backend(backend)
            except BackendUnavailableError as e:
                logger.debug("Skipping backend %s: %s", backend, e)
                continue
            return backend

        raise BackendUnavailableError("No available backends found")
