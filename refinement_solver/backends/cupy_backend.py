"""
CuPy backend implementation for GPU refinement.
"""

import warnings
import numpy as np
from typing import Optional, Any, List

try:
    import cupy as cp
    import cupyx.scipy.linalg as cpla
    CUPY_AVAILABLE = True
except ImportError:
    CUPY_AVAILABLE = False

from .base import Backend, Factorization, Workspace
from ..exceptions import BackendUnavailableError, SingularMatrixError, SolveError


def gpu_device_count() -> int:
    """Number of visible CUDA devices, 0 if CuPy or the driver is missing."""
    if not CUPY_AVAILABLE:
        return 0
    try:
        return cp.cuda.runtime.getDeviceCount()
    except cp.cuda.runtime.CUDARuntimeError:
        return 0


def zero_pivot_info(lu) -> int:
    """
    LAPACK-style diagnostic for a device LU matrix.

    Returns i + 1 for the first exactly zero diagonal entry ``U[i, i]``,
    or 0 when every pivot is non-zero.
    """
    zero = cp.flatnonzero(cp.diagonal(lu) == 0)
    if zero.size == 0:
        return 0
    return int(zero[0].item()) + 1


class DeviceWorkspace(Workspace):
    """
    Workspace pinned to one CUDA device.

    The device becomes current when the workspace is created, and the
    device that was current before is restored when it closes.
    """

    def __init__(self, backend: "CuPyBackend", device_id: int):
        self._previous = cp.cuda.Device()
        cp.cuda.Device(device_id).use()
        super().__init__(backend)

    def close(self):
        if self.closed:
            return
        try:
            super().close()
        finally:
            self._previous.use()


class CuPyBackend(Backend):
    """
    CuPy-based GPU backend.

    A, b, x, the scratch vectors and the LU factors stay in device memory
    for the whole solve; only the residual norm crosses to the host each
    iteration.
    """

    name = "cupy"
    placement = "device"

    def __init__(self, device_id: Optional[int] = None, free_memory: bool = False):
        """
        Parameters
        ----------
        device_id : int, optional
            CUDA device to run on (current device when None)
        free_memory : bool
            Return cached blocks of the default memory pool to the driver
            when a solve releases its workspace
        """
        if not CUPY_AVAILABLE:
            raise BackendUnavailableError("CuPy is not available. Install with: pip install cupy")
        count = gpu_device_count()
        if count == 0:
            raise BackendUnavailableError("CuPy is installed but no CUDA device is visible")
        if device_id is not None and not 0 <= device_id < count:
            raise BackendUnavailableError(
                f"CUDA device {device_id} requested, {count} device(s) visible"
            )
        super().__init__(device_id)
        self.free_memory = free_memory

    def workspace(self):
        if self.device_id is None:
            return super().workspace()
        return DeviceWorkspace(self, self.device_id)

    def upload_matrix(self, values: np.ndarray, n: int) -> Any:
        host = np.asarray(values, dtype=np.float64).reshape((n, n), order="F")
        return cp.asfortranarray(cp.asarray(host))

    def upload_vector(self, values: np.ndarray) -> Any:
        return cp.array(values, dtype=cp.float64)

    def allocate_vector(self, n: int) -> Any:
        return cp.empty(n, dtype=cp.float64)

    def download_vector(self, handle: Any, out: np.ndarray) -> np.ndarray:
        out[...] = cp.asnumpy(handle)
        return out

    def release(self, handles: List[Any]):
        handles.clear()
        cp.cuda.get_current_stream().synchronize()
        if self.free_memory:
            cp.get_default_memory_pool().free_all_blocks()

    def _lu_factor(self, A: Any):
        """Device LU of a copy of A; raises on an exactly zero pivot."""
        with warnings.catch_warnings():
            # Singularity is reported through the diagonal check below
            warnings.simplefilter("ignore")
            lu, piv = cpla.lu_factor(A, overwrite_a=False, check_finite=False)
        info = zero_pivot_info(lu)
        if info > 0:
            raise SingularMatrixError(
                f"Matrix is singular: U[{info - 1}, {info - 1}] is exactly zero",
                info=info,
            )
        return lu, piv

    def factorize(self, A: Any) -> Factorization:
        lu, piv = self._lu_factor(A)
        return Factorization(lu=lu, piv=piv, n=A.shape[0], backend_name=self.name)

    def solve(self, factorization: Factorization, rhs: Any) -> Any:
        self._check_factorization(factorization)
        try:
            x = cpla.lu_solve((factorization.lu, factorization.piv), rhs,
                              overwrite_b=True, check_finite=False)
        except ValueError as e:
            raise SolveError(f"Device LU solve failed: {e}") from e
        if x is not rhs:
            cp.copyto(rhs, x)
        return rhs

    def residual(self, A: Any, x: Any, b: Any, out: Any) -> Any:
        cp.copyto(out, b)
        out -= A @ x
        return out

    def norm2(self, v: Any) -> float:
        return cp.linalg.norm(v).item()

    def axpy(self, alpha: float, x: Any, y: Any) -> Any:
        y += alpha * x
        return y

    def copy(self, src: Any, dst: Any) -> Any:
        cp.copyto(dst, src)
        return dst
