"""
Iterative refinement engine shared by every backend.

The algorithm factors A once, solves against b for the initial x, then
alternates residual evaluation ``r = b - A x`` (with the unfactored A),
a convergence check, and a correction solve ``A z = r`` followed by
``x += z``. Backends only supply the primitives; the loop is the same for
host, device and hybrid execution.
"""

import logging
import time
from typing import Optional, Any, Union, Dict, Iterable

import numpy as np

from .backends.base import Backend, BackendRegistry
from .convergence import ConvergencePolicy, IterationTrace, TerminationReason
from .exceptions import (
    BackendUnavailableError,
    SingularMatrixError,
    SolveError,
    ValidationError,
)
from .problem import DenseSystem, RefinementResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITER = 20


def _check_max_iter(max_iter: Any) -> int:
    if isinstance(max_iter, bool) or not isinstance(max_iter, (int, np.integer)):
        raise ValidationError(f"max_iter must be an integer, got {type(max_iter).__name__}")
    if max_iter < 0:
        raise ValidationError(f"max_iter must be >= 0, got {max_iter}")
    return int(max_iter)


def refine(backend: Backend,
           A: Any,
           b: Any,
           x: np.ndarray,
           max_iter: int = DEFAULT_MAX_ITER,
           check_finite: bool = True,
           policy: Optional[ConvergencePolicy] = None) -> IterationTrace:
    """
    Solve ``A x = b`` by LU iterative refinement, writing the result into x.

    Parameters
    ----------
    backend : Backend
        Backend supplying factorization, solves and vector operations
    A : array-like
        Flat column-major matrix of length N**2, or a 2-D (N, N) array.
        Never modified.
    b : array-like
        Right-hand side of length N. Never modified.
    x : numpy.ndarray
        Float64 buffer of length N; overwritten with the refined solution
        when the run terminates normally, left untouched on error.
    max_iter : int
        Maximum number of corrections. The residual is evaluated after each
        correction, so the trace holds at most ``max_iter + 1`` entries.
    check_finite : bool
        Reject NaN or Inf in A and b
    policy : ConvergencePolicy, optional
        Stopping rule (a fresh ConvergencePolicy by default)

    Returns
    -------
    trace : IterationTrace
        Residual norm per iteration and the termination reason

    Raises
    ------
    SingularMatrixError
        The factorization found a zero pivot; no solve was attempted.
        ``error.trace.reason`` is SINGULAR_MATRIX.
    SolveError
        A triangular solve failed; ``error.iteration`` is the iteration
        (None for the initial solve) and ``error.trace`` the partial trace.
    ValidationError
        Bad shapes, non-finite inputs or a negative max_iter
    """
    if x is None:
        raise ValidationError("x must be provided; the solution is written into it")
    system = DenseSystem(A, b, x, check_finite=check_finite)
    max_iter = _check_max_iter(max_iter)
    if policy is None:
        policy = ConvergencePolicy()
    policy.reset()

    n = system.n
    trace = IterationTrace(backend_name=backend.name)

    with backend.workspace() as ws:
        d_A = ws.matrix(system.matrix, n)
        d_b = ws.vector(system.rhs)
        # x starts as a copy of b and is solved in place
        d_x = ws.vector(system.rhs)
        d_r = ws.scratch(n)
        d_z = ws.scratch(n)

        t0 = time.perf_counter()
        try:
            lu = ws.factorize(d_A)
        except SingularMatrixError as e:
            trace.factorize_time = time.perf_counter() - t0
            trace.finish(TerminationReason.SINGULAR_MATRIX)
            e.trace = trace
            logger.info("LU factorization failed on %s backend (info=%s)", backend.name, e.info)
            raise
        trace.factorize_time = time.perf_counter() - t0

        t0 = time.perf_counter()
        k = None
        try:
            backend.solve(lu, d_x)

            for k in range(max_iter + 1):
                backend.residual(d_A, d_x, d_b, d_r)
                current_norm = backend.norm2(d_r)
                trace.append(k, current_norm)
                logger.debug("%s iter %d: ||r|| = %.8e", backend.name, k, current_norm)

                reason = policy.evaluate(k, current_norm)
                if reason is not None:
                    trace.finish(reason)
                    break
                if k == max_iter:
                    trace.finish(TerminationReason.MAX_ITERATIONS)
                    break

                # Correction: A z = r, x = x + z
                backend.copy(d_r, d_z)
                backend.solve(lu, d_z)
                backend.axpy(1.0, d_z, d_x)
                trace.corrections += 1
        except SolveError as e:
            e.iteration = k
            e.trace = trace
            logger.info("Solve failed on %s backend at iteration %s", backend.name, k)
            raise
        finally:
            trace.solve_time = time.perf_counter() - t0

        backend.download_vector(d_x, x)

    logger.info(
        "%s backend: %s after %d corrections, ||r|| = %.8e",
        backend.name, trace.reason.name, trace.corrections, trace.final_residual,
    )
    return trace


class RefinementSolver:
    """
    LU iterative refinement solver bound to one backend.

    Each call to :meth:`solve` owns its own workspace, so the solver may be
    reused for any number of independent systems.
    """

    def __init__(self,
                 backend: Union[str, Backend, None] = None,
                 max_iter: int = DEFAULT_MAX_ITER,
                 device_id: Optional[int] = None,
                 check_finite: bool = True,
                 **backend_kwargs):
        """
        Initialize the refinement solver.

        Parameters
        ----------
        backend : str, Backend, or None
            Backend name ("scipy", "cupy", "hybrid"), a Backend instance,
            or None / "auto" for auto-selection
        max_iter : int
            Maximum number of corrections per solve
        device_id : int, optional
            GPU device ID (for GPU backends). Auto-selection prefers GPU
            backends only when a device is given.
        check_finite : bool
            Reject NaN or Inf in the inputs
        **backend_kwargs
            Additional backend constructor parameters (e.g. free_memory)
        """
        self.max_iter = _check_max_iter(max_iter)
        self.check_finite = check_finite

        if isinstance(backend, Backend):
            self.backend = backend
        else:
            if backend is None or backend == "auto":
                prefer_gpu = (device_id is not None)
                backend = BackendRegistry.auto_select(prefer_gpu=prefer_gpu)
            if device_id is not None:
                backend_kwargs["device_id"] = device_id
            self.backend = BackendRegistry.get_backend(backend, **backend_kwargs)

        self.backend_name = self.backend.name

    def solve(self, A: Any, b: Any, x0: Optional[Any] = None) -> RefinementResult:
        """
        Solve ``A x = b``.

        Parameters
        ----------
        A : array-like
            Flat column-major matrix (length N**2) or 2-D (N, N) array
        b : array-like
            Right-hand side vector
        x0 : array-like, optional
            Initial solution buffer contents (defaults to b). Not modified.

        Returns
        -------
        result : RefinementResult
            ``(x, trace)``; unpacks as a tuple
        """
        x = np.array(b if x0 is None else x0, dtype=np.float64)
        trace = refine(self.backend, A, b, x,
                       max_iter=self.max_iter,
                       check_finite=self.check_finite)
        return RefinementResult(x, trace)


def solve(A: Any,
          b: Any,
          x0: Optional[Any] = None,
          backend: Union[str, Backend] = "auto",
          max_iter: int = DEFAULT_MAX_ITER,
          device_id: Optional[int] = None,
          **kwargs) -> RefinementResult:
    """
    High-level solve function for dense systems.

    Parameters
    ----------
    A : array-like
        Flat column-major matrix (length N**2) or 2-D (N, N) array
    b : array-like
        Right-hand side vector
    x0 : array-like, optional
        Initial solution buffer contents (defaults to b)
    backend : str or Backend
        Backend to use ("auto", "scipy", "cupy", "hybrid") or an instance
    max_iter : int
        Maximum number of corrections
    device_id : int, optional
        GPU device ID
    **kwargs
        Passed to RefinementSolver (check_finite, backend options)

    Returns
    -------
    result : RefinementResult
        ``(x, trace)``

    Examples
    --------
    >>> import numpy as np
    >>> from refinement_solver import solve
    >>> A = np.array([[4.0, 1.0], [2.0, 3.0]])
    >>> x, trace = solve(A, A.sum(axis=1), backend="scipy")
    >>> trace.reason.name in ("STALLED", "EXACT_RESIDUAL")
    True
    """
    solver = RefinementSolver(
        backend=backend,
        max_iter=max_iter,
        device_id=device_id,
        **kwargs
    )
    return solver.solve(A, b, x0)


def compare_backends(A: Any,
                     b: Any,
                     x0: Optional[Any] = None,
                     max_iter: int = DEFAULT_MAX_ITER,
                     backends: Optional[Iterable[str]] = None) -> Dict[str, RefinementResult]:
    """
    Run the same refinement problem through several backends.

    Parameters
    ----------
    A, b, x0, max_iter
        As for :func:`solve`
    backends : iterable of str, optional
        Backend names; every registered backend by default. Backends that
        cannot run here are skipped.

    Returns
    -------
    results : dict
        Backend name to RefinementResult, in the order run
    """
    if backends is None:
        backends = BackendRegistry.list_backends()

    results = {}
    for name in backends:
        try:
            solver = RefinementSolver(backend=name, max_iter=max_iter)
        except BackendUnavailableError as e:
            logger.warning("Skipping %s backend: %s", name, e)
            continue
        results[name] = solver.solve(A, b, x0)
    return results
