"""
Convergence policy and iteration trace objects.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List


class TerminationReason(Enum):
    """Why a refinement run stopped."""
    EXACT_RESIDUAL = "exact_residual"
    STALLED = "stalled"
    MAX_ITERATIONS = "max_iterations"
    SINGULAR_MATRIX = "singular_matrix"

    @property
    def succeeded(self) -> bool:
        """True for every reason except a failed factorization."""
        return self is not TerminationReason.SINGULAR_MATRIX


class ConvergencePolicy:
    """
    Stopping rule consulted once per refinement iteration.

    The only state kept is the residual norm of the previous iteration.
    Stops when the residual is exactly zero, or when a norm fails to
    improve on the previous one (``>=``). The comparison is skipped on the
    first iteration, which always gets one correction.
    """

    def __init__(self):
        self.prev_norm = math.inf

    def reset(self):
        """Forget the previous residual norm."""
        self.prev_norm = math.inf

    def evaluate(self, k: int, current_norm: float) -> Optional[TerminationReason]:
        """
        Decide whether iteration ``k`` should stop.

        Parameters
        ----------
        k : int
            Zero-based iteration index
        current_norm : float
            Euclidean norm of the residual at iteration ``k``

        Returns
        -------
        reason : TerminationReason or None
            Reason to stop, or None to keep refining. On None the norm is
            remembered for the next call.
        """
        if current_norm == 0.0:
            return TerminationReason.EXACT_RESIDUAL
        if k > 0 and current_norm >= self.prev_norm:
            return TerminationReason.STALLED
        self.prev_norm = current_norm
        return None


@dataclass(frozen=True)
class TraceEntry:
    """Residual norm observed at one iteration."""
    iteration: int
    residual_norm: float


@dataclass
class IterationTrace:
    """
    Diagnostics of a single refinement run.

    Attributes
    ----------
    backend_name : str
        Backend that executed the run
    entries : list of TraceEntry
        Residual norms in iteration order, append-only
    reason : TerminationReason or None
        Termination reason, None while the run is in progress
    corrections : int
        Number of correction solves applied to x (the initial solve excluded)
    factorize_time : float
        Time spent in the factorization (seconds)
    solve_time : float
        Time spent in the initial solve and the refinement loop (seconds)
    """
    backend_name: str = ""
    entries: List[TraceEntry] = field(default_factory=list)
    reason: Optional[TerminationReason] = None
    corrections: int = 0
    factorize_time: float = 0.0
    solve_time: float = 0.0

    def append(self, iteration: int, residual_norm: float):
        """Record the residual norm of an iteration."""
        if self.reason is not None:
            raise RuntimeError("Cannot append to a finished trace")
        self.entries.append(TraceEntry(iteration, float(residual_norm)))

    def finish(self, reason: TerminationReason):
        """Record why the run stopped."""
        if self.reason is not None:
            raise RuntimeError(f"Trace already finished with {self.reason.name}")
        self.reason = reason

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def residual_norms(self) -> List[float]:
        return [entry.residual_norm for entry in self.entries]

    @property
    def final_residual(self) -> Optional[float]:
        if not self.entries:
            return None
        return self.entries[-1].residual_norm

    @property
    def stop_iteration(self) -> Optional[int]:
        """Index of the last iteration evaluated, None if none was."""
        if not self.entries:
            return None
        return self.entries[-1].iteration

    @property
    def succeeded(self) -> bool:
        return self.reason is not None and self.reason.succeeded

    def __str__(self):
        reason = self.reason.name if self.reason is not None else "RUNNING"
        final = self.final_residual
        final_str = f"{final:.2e}" if final is not None else "n/a"
        return (
            f"{reason} after {len(self.entries)} residual evaluations "
            f"({self.corrections} corrections) on {self.backend_name}\n"
            f"  Final residual norm: {final_str}\n"
            f"  Factorize time: {self.factorize_time:.4f}s\n"
            f"  Solve time: {self.solve_time:.4f}s"
        )

    def to_dict(self):
        """Convert to a plain dictionary."""
        return {
            "backend": self.backend_name,
            "reason": self.reason.value if self.reason is not None else None,
            "succeeded": self.succeeded,
            "niter": len(self.entries),
            "corrections": self.corrections,
            "residual_norms": self.residual_norms,
            "residual_norm": self.final_residual,
            "factorize_time": self.factorize_time,
            "solve_time": self.solve_time,
        }
