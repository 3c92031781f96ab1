"""
Rendering of iteration traces and backend comparisons.
"""

import logging
from typing import Optional, Dict, List, Mapping

import numpy as np

from .convergence import IterationTrace, TerminationReason
from .problem import RefinementResult

REASON_MESSAGES = {
    TerminationReason.EXACT_RESIDUAL: "Exact zero residual.",
    TerminationReason.STALLED: "Residual stopped decreasing.",
    TerminationReason.MAX_ITERATIONS: "Iteration limit reached.",
    TerminationReason.SINGULAR_MATRIX: "LU factorization failed: singular matrix.",
}


def trace_lines(trace: IterationTrace, label: Optional[str] = None) -> List[str]:
    """Table lines for a trace: header, rule, one row per iteration, stop line."""
    label = label or trace.backend_name
    header = "%-5s | %-15s" % ("Iter", f"||r|| ({label})")
    lines = [header, "-" * max(26, len(header))]
    for entry in trace:
        lines.append("%-5d | %-1.8e" % (entry.iteration, entry.residual_norm))
    if trace.reason is not None:
        lines.append(REASON_MESSAGES[trace.reason])
    return lines


def format_trace(trace: IterationTrace, label: Optional[str] = None) -> str:
    """
    Format a trace as the residual table printed by the refinement demo.

    Parameters
    ----------
    trace : IterationTrace
        Trace to render
    label : str, optional
        Column label (defaults to the backend name)

    Returns
    -------
    table : str
        Multi-line table
    """
    return "\n".join(trace_lines(trace, label))


def log_trace(trace: IterationTrace,
              logger: logging.Logger,
              label: Optional[str] = None,
              level: int = logging.INFO):
    """Write the trace table to ``logger``, one record per line."""
    for line in trace_lines(trace, label):
        logger.log(level, line)


def relative_differences(reference: IterationTrace, other: IterationTrace) -> np.ndarray:
    """
    Relative difference of residual norms at matching iterations.

    Only iterations present in both traces are compared. Where the
    reference norm is zero the absolute difference is used.
    """
    m = min(len(reference), len(other))
    ref = np.asarray(reference.residual_norms[:m], dtype=np.float64)
    oth = np.asarray(other.residual_norms[:m], dtype=np.float64)
    scale = np.where(ref == 0.0, 1.0, np.abs(ref))
    return np.abs(oth - ref) / scale


def traces_agree(reference: IterationTrace,
                 other: IterationTrace,
                 rtol: float = 1e-6,
                 atol: float = 0.0) -> bool:
    """
    True if two runs are interchangeable.

    Both traces must have the same length and termination reason, and every
    pair of residual norms must satisfy
    ``|a - b| <= rtol * max(|a|, |b|) + atol``. ``atol`` is the round-off
    floor below which the digits of a residual norm are noise.
    """
    if len(reference) != len(other) or reference.reason is not other.reason:
        return False
    ref = np.asarray(reference.residual_norms, dtype=np.float64)
    oth = np.asarray(other.residual_norms, dtype=np.float64)
    bound = rtol * np.maximum(np.abs(ref), np.abs(oth)) + atol
    return bool(np.all(np.abs(oth - ref) <= bound))


def format_comparison(results: Mapping[str, RefinementResult],
                      reference: Optional[str] = None) -> str:
    """
    Side-by-side residual norms of several backends.

    Parameters
    ----------
    results : mapping
        Backend name to RefinementResult, as from compare_backends()
    reference : str, optional
        Backend the others are compared against (first one by default)

    Returns
    -------
    table : str
        One row per iteration plus the termination reason of each backend
        and the largest relative difference against the reference
    """
    if not results:
        return "No backends were run."
    names = list(results.keys())
    if reference is None:
        reference = names[0]
    traces: Dict[str, IterationTrace] = {name: res.trace for name, res in results.items()}

    width = max(16, max(len(name) for name in names) + 2)
    header = "%-5s | " % "Iter" + " | ".join(f"{name:<{width}}" for name in names)
    lines = [header, "-" * len(header)]

    rows = max(len(trace) for trace in traces.values())
    for i in range(rows):
        cells = []
        for name in names:
            trace = traces[name]
            if i < len(trace):
                cells.append(f"{trace.entries[i].residual_norm:<{width}.8e}")
            else:
                cells.append(" " * width)
        lines.append("%-5d | " % i + " | ".join(cells))

    lines.append("")
    for name in names:
        trace = traces[name]
        reason = trace.reason.name if trace.reason is not None else "RUNNING"
        line = f"{name}: {reason}, {trace.corrections} corrections"
        if name != reference:
            diffs = relative_differences(traces[reference], trace)
            max_diff = float(diffs.max()) if diffs.size else 0.0
            line += f", max rel diff vs {reference}: {max_diff:.2e}"
        lines.append(line)
    return "\n".join(lines)
