"""
Problem and result carriers.
"""

from typing import NamedTuple, Optional, Any

import numpy as np

from .convergence import IterationTrace
from .exceptions import DimensionError, ValidationError


class DenseSystem:
    """
    Validated dense system ``A x = b`` in double precision.

    Parameters
    ----------
    A : array-like
        Flat column-major storage of length N**2, or a 2-D (N, N) array
    b : array-like
        Right-hand side of length N
    x : numpy.ndarray, optional
        Output buffer of length N. Must be a float64 array if given,
        since the engine writes the result into it in place. Its contents
        are never read.
    check_finite : bool
        Reject NaN or Inf in A and b

    Attributes
    ----------
    n : int
        System dimension
    matrix : numpy.ndarray
        Flat column-major view of A (float64, length N**2)
    rhs : numpy.ndarray
        b as a float64 vector
    x : numpy.ndarray or None
        The caller's solution buffer
    """

    def __init__(self,
                 A: Any,
                 b: Any,
                 x: Optional[np.ndarray] = None,
                 check_finite: bool = True):
        rhs = np.asarray(b, dtype=np.float64)
        if rhs.ndim != 1:
            raise DimensionError(f"b must be one-dimensional, got shape {rhs.shape}")
        n = rhs.shape[0]
        if n < 1:
            raise DimensionError("System dimension must be at least 1")

        matrix = np.asarray(A, dtype=np.float64)
        if matrix.ndim == 2:
            if matrix.shape != (n, n):
                raise DimensionError(
                    f"A has shape {matrix.shape}, expected ({n}, {n}) for len(b) = {n}"
                )
            matrix = matrix.ravel(order="F")
        elif matrix.ndim != 1:
            raise DimensionError(f"A must be flat or 2-D, got {matrix.ndim} dimensions")
        if matrix.shape[0] != n * n:
            raise DimensionError(
                f"A has {matrix.shape[0]} entries, expected {n * n} for len(b) = {n}"
            )

        if x is not None:
            if not isinstance(x, np.ndarray) or x.dtype != np.float64:
                raise ValidationError("x must be a float64 numpy array (it is updated in place)")
            if x.shape != (n,):
                raise DimensionError(f"x has shape {x.shape}, expected ({n},)")

        if check_finite:
            for label, values in (("A", matrix), ("b", rhs)):
                if not np.all(np.isfinite(values)):
                    raise ValidationError(f"{label} contains NaN or Inf")

        self.n = n
        self.matrix = matrix
        self.rhs = rhs
        self.x = x

    def as_2d(self) -> np.ndarray:
        """Return A as an (N, N) Fortran-ordered view."""
        return self.matrix.reshape((self.n, self.n), order="F")

    def residual_norm(self, x: np.ndarray) -> float:
        """``||b - A x||_2`` by a direct dense product on the host."""
        r = self.rhs - self.as_2d() @ np.asarray(x, dtype=np.float64)
        return float(np.linalg.norm(r))


class RefinementResult(NamedTuple):
    """Solution and diagnostics of one refinement run."""
    x: np.ndarray
    trace: IterationTrace
