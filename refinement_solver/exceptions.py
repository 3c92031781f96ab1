"""
Exception hierarchy for the refinement solver.

Every error raised by the package derives from RefinementError. Numerical
failures carry the diagnostic code reported by the factorization or the
triangular solve, plus the iteration trace collected up to the failure, so
that a caller can tell a broken solve apart from a stalled one (a stall is
a normal termination and never raises).
"""

from typing import Optional, Any


class RefinementError(Exception):
    """Base exception for all refinement solver errors."""
    pass


class ValidationError(RefinementError):
    """Input validation failed (non-finite values, bad parameters)."""
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when the matrix storage length is not N**2 for the right-hand
    side length N, or when x and b differ in length.
    """
    pass


class NumericalError(RefinementError):
    """
    Numerical computation failed.

    Attributes
    ----------
    info : int or None
        Diagnostic code returned by the underlying LAPACK-style routine
    iteration : int or None
        Refinement iteration at which the failure occurred (None when the
        failure happened before the loop started)
    trace : IterationTrace or None
        Residual history collected before the failure
    reason : TerminationReason or None
        Termination reason recorded on the trace
    """

    def __init__(self,
                 message: str,
                 info: Optional[int] = None,
                 iteration: Optional[int] = None,
                 trace: Any = None):
        super().__init__(message)
        self.info = info
        self.iteration = iteration
        self.trace = trace

    @property
    def reason(self):
        if self.trace is None:
            return None
        return self.trace.reason


class SingularMatrixError(NumericalError):
    """
    The LU factorization found an exactly zero pivot.

    ``info`` follows the LAPACK convention: ``U[info-1, info-1]`` is zero.
    Fatal to the current solve and never retried.
    """
    pass


class SolveError(NumericalError):
    """A triangular solve against a valid factorization failed."""
    pass


class BackendError(RefinementError):
    """Backend selection or usage failed."""
    pass


class BackendUnavailableError(BackendError):
    """The requested backend cannot run here (library or device missing)."""
    pass


class BackendMismatchError(BackendError):
    """
    A factorization was handed to a backend other than the one that made it.

    Attributes
    ----------
    expected : str
        Name of the backend that produced the factorization
    actual : str
        Name of the backend it was passed to
    """

    def __init__(self, message: str, expected: str, actual: str):
        super().__init__(message)
        self.expected = expected
        self.actual = actual
