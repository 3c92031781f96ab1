"""
SciPy backend implementation (host LAPACK/BLAS).
"""

import numpy as np
from scipy.linalg import blas, lapack
from typing import Optional

from .base import Backend, Factorization
from ..exceptions import NumericalError, SingularMatrixError, SolveError


class SciPyBackend(Backend):
    """
    Host-resident backend calling LAPACK ``dgetrf``/``dgetrs`` and BLAS
    ``dgemv``/``dnrm2``/``daxpy``/``dcopy`` through ``scipy.linalg``.

    Matrices are Fortran-ordered NumPy views over the caller's column-major
    storage, so the routines run without layout copies.
    """

    name = "scipy"
    placement = "host"

    def __init__(self, device_id: Optional[int] = None):
        super().__init__(device_id)
        if device_id is not None:
            raise ValueError("SciPy backend does not support device_id (CPU only)")

    def upload_matrix(self, values: np.ndarray, n: int) -> np.ndarray:
        return np.asarray(values, dtype=np.float64).reshape((n, n), order="F")

    def upload_vector(self, values: np.ndarray) -> np.ndarray:
        return np.array(values, dtype=np.float64)

    def allocate_vector(self, n: int) -> np.ndarray:
        return np.empty(n, dtype=np.float64)

    def download_vector(self, handle: np.ndarray, out: np.ndarray) -> np.ndarray:
        out[...] = handle
        return out

    def factorize(self, A: np.ndarray) -> Factorization:
        # overwrite_a=0 keeps A intact for the residuals
        lu, piv, info = lapack.dgetrf(A, overwrite_a=0)
        if info > 0:
            raise SingularMatrixError(
                f"Matrix is singular: U[{info - 1}, {info - 1}] is exactly zero",
                info=int(info),
            )
        if info < 0:
            raise NumericalError(f"dgetrf: illegal value in argument {-info}", info=int(info))
        return Factorization(lu=lu, piv=piv, n=A.shape[0], backend_name=self.name)

    def solve(self, factorization: Factorization, rhs: np.ndarray) -> np.ndarray:
        self._check_factorization(factorization)
        x, info = lapack.dgetrs(factorization.lu, factorization.piv, rhs, overwrite_b=1)
        if info != 0:
            raise SolveError(f"dgetrs failed with info = {info}", info=int(info))
        if x is not rhs:
            rhs[...] = x
        return rhs

    def residual(self, A: np.ndarray, x: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        # out = b; out = -1.0 * A @ x + 1.0 * out
        self.copy(b, out)
        y = blas.dgemv(-1.0, A, x, beta=1.0, y=out, overwrite_y=1)
        if y is not out:
            out[...] = y
        return out

    def norm2(self, v: np.ndarray) -> float:
        return float(blas.dnrm2(v))

    def axpy(self, alpha: float, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        z = blas.daxpy(x, y, a=alpha)
        if z is not y:
            y[...] = z
        return y

    def copy(self, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
        out = blas.dcopy(src, dst)
        if out is not dst:
            dst[...] = out
        return dst
