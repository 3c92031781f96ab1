"""
Utility functions for building dense test systems.
"""

from typing import Optional

import numpy as np

# 10x10 demo matrix, listed row by row as humans read it
DEMO_ROWS = (
     1,  4,  0, -9,  1, 10, -2, -1,  2, -6,
     9,  8,  3,  2,  2, 10, -7,  1, 10, -4,
     3, -6, -5, -5,  6,  3, -3,  9,  8,  1,
    -7,  5, -5,  8,  9,  0, -5, -1,  5,  3,
    -1, -9, -2,  3, -7,  8,  4, -6, -8, 20,
     8,  8, -5,  4,  7,  1,  2, -9, -5,  9,
     3, -7,  6,  3, -7, -9,  1, -1,  1,  7,
    -5, -3,  0,  0,  8,  0,  3,  9,  0,  5,
    -5, 10, -5, -5,  7,  7, -4,  4,  3,  7,
    -3,  9,  2, -1, -1, -6, -7, -8, -3,  0,
)
DEMO_N = 10


def row_major_to_column_major(values, n: int) -> np.ndarray:
    """
    Transpose flat row-major storage into flat column-major storage.

    Parameters
    ----------
    values : array-like
        n*n values, row index varying slowest
    n : int
        Matrix dimension

    Returns
    -------
    A : numpy.ndarray
        Float64 array of length n*n, column index varying slowest
    """
    values = np.asarray(values, dtype=np.float64)
    if values.shape != (n * n,):
        raise ValueError(f"Expected {n * n} values, got shape {values.shape}")
    return values.reshape((n, n)).ravel(order="F")


def row_sums(A: np.ndarray, n: int) -> np.ndarray:
    """
    Row sums of a flat column-major matrix.

    Used as the right-hand side, b = A @ ones, so that the exact solution
    is the all-ones vector.
    """
    return np.asarray(A, dtype=np.float64).reshape((n, n), order="F").sum(axis=1)


def demo_system():
    """
    The 10x10 demo system.

    Returns
    -------
    A : numpy.ndarray
        Flat column-major matrix (length 100)
    b : numpy.ndarray
        Row sums of A; the exact solution is all ones
    """
    A = row_major_to_column_major(DEMO_ROWS, DEMO_N)
    return A, row_sums(A, DEMO_N)


def random_system(n: int, seed: Optional[int] = None, dominance: float = 0.0):
    """
    Random dense system with known all-ones solution.

    Parameters
    ----------
    n : int
        Matrix dimension
    seed : int, optional
        Seed for numpy.random.default_rng
    dominance : float
        Added to every diagonal entry (times n) to improve conditioning

    Returns
    -------
    A : numpy.ndarray
        Flat column-major matrix (length n*n)
    b : numpy.ndarray
        Row sums of A
    """
    rng = np.random.default_rng(seed)
    M = rng.standard_normal((n, n))
    if dominance:
        M += dominance * n * np.eye(n)
    A = M.ravel(order="F")
    return A, row_sums(A, n)
