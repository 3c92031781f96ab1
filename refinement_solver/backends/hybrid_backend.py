"""
Hybrid backend: device factorization and solves, host-resident pivots.
"""

import numpy as np
from typing import Any

from .base import Factorization
from .cupy_backend import CuPyBackend, CUPY_AVAILABLE
from ..exceptions import SolveError

if CUPY_AVAILABLE:
    import cupy as cp
    import cupyx.scipy.linalg as cpla


def pivots_to_permutation(piv: np.ndarray) -> np.ndarray:
    """
    Turn zero-based LAPACK pivot indices into a row permutation.

    LAPACK records the factorization as a sequence of row interchanges:
    row i was swapped with row piv[i], for i = 0 .. n-1 in order. The
    returned array ``perm`` satisfies ``(P b) == b[perm]``.

    Parameters
    ----------
    piv : numpy.ndarray
        Pivot indices of length n

    Returns
    -------
    perm : numpy.ndarray
        Permutation of 0 .. n-1 (intp)
    """
    piv = np.asarray(piv)
    perm = np.arange(piv.shape[0])
    for i, p in enumerate(piv):
        if p != i:
            perm[i], perm[p] = perm[p], perm[i]
    return perm


class HybridBackend(CuPyBackend):
    """
    Coupled host/device backend.

    The LU factors and every vector live on the device, as in
    :class:`CuPyBackend`, but the pivot vector is moved to host memory
    right after the factorization and the row interchanges are resolved
    there. Each solve applies the host permutation to the device
    right-hand side, then runs the unit-lower and upper triangular solves
    on the device.
    """

    name = "hybrid"
    placement = "hybrid"

    def factorize(self, A: Any) -> Factorization:
        lu, piv = self._lu_factor(A)
        piv_host = cp.asnumpy(piv)
        del piv
        return Factorization(
            lu=lu,
            piv=piv_host,
            n=A.shape[0],
            backend_name=self.name,
            permutation=pivots_to_permutation(piv_host),
        )

    def solve(self, factorization: Factorization, rhs: Any) -> Any:
        self._check_factorization(factorization)
        lu = factorization.lu
        try:
            y = rhs[cp.asarray(factorization.permutation)]
            y = cpla.solve_triangular(lu, y, lower=True, unit_diagonal=True,
                                      overwrite_b=True, check_finite=False)
            y = cpla.solve_triangular(lu, y, lower=False,
                                      overwrite_b=True, check_finite=False)
        except ValueError as e:
            raise SolveError(f"Hybrid triangular solve failed: {e}") from e
        cp.copyto(rhs, y)
        return rhs
