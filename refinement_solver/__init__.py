"""
LU Iterative Refinement for Dense Linear Systems

This package solves dense double-precision systems Ax = b by factoring A
once with LU and refining the solution with repeated residual/correction
solves, and compares how the same algorithm behaves on different compute
backends: host (SciPy LAPACK/BLAS), GPU (CuPy), and hybrid (GPU factors
with host-resident pivots).

Features:
- One refinement engine, interchangeable backends
- Structured iteration traces with termination reasons
- Scoped device memory, released on every exit path
- Side-by-side backend comparison and trace rendering
"""

import logging

from .engine import refine, solve, compare_backends, RefinementSolver, DEFAULT_MAX_ITER
from .convergence import ConvergencePolicy, IterationTrace, TerminationReason, TraceEntry
from .problem import DenseSystem, RefinementResult
from .backends import BackendRegistry
from .exceptions import (
    RefinementError,
    ValidationError,
    DimensionError,
    NumericalError,
    SingularMatrixError,
    SolveError,
    BackendError,
    BackendUnavailableError,
    BackendMismatchError,
)
from .report import format_trace, format_comparison
from .utils import demo_system, row_major_to_column_major

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
__all__ = [
    # Engine
    "refine",
    "solve",
    "compare_backends",
    "RefinementSolver",
    "DEFAULT_MAX_ITER",
    # Diagnostics
    "ConvergencePolicy",
    "IterationTrace",
    "TerminationReason",
    "TraceEntry",
    "DenseSystem",
    "RefinementResult",
    "BackendRegistry",
    # Errors
    "RefinementError",
    "ValidationError",
    "DimensionError",
    "NumericalError",
    "SingularMatrixError",
    "SolveError",
    "BackendError",
    "BackendUnavailableError",
    "BackendMismatchError",
    # Utilities
    "format_trace",
    "format_comparison",
    "demo_system",
    "row_major_to_column_major",
]
