"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np

from refinement_solver.backends.base import Backend, Factorization
from refinement_solver.exceptions import SingularMatrixError, SolveError
from refinement_solver.utils import demo_system, DEMO_N


class ScriptedBackend(Backend):
    """
    Host backend whose residual norms come from a script.

    The vectors are real NumPy arrays, but ``norm2`` returns the next
    scripted value instead of computing one, so the engine's control flow
    can be driven exactly. Calls are counted for assertions.
    """

    name = "scripted"
    placement = "host"

    def __init__(self, norms=(), singular=False, fail_on_solve=None):
        super().__init__()
        self.norms = list(norms)
        self.singular = singular
        self.fail_on_solve = fail_on_solve
        self.factorize_calls = 0
        self.solve_calls = 0
        self.residual_calls = 0
        self.released = 0

    def upload_matrix(self, values, n):
        return np.asarray(values, dtype=np.float64).reshape((n, n), order="F")

    def upload_vector(self, values):
        return np.array(values, dtype=np.float64)

    def allocate_vector(self, n):
        return np.zeros(n)

    def download_vector(self, handle, out):
        out[...] = handle
        return out

    def release(self, handles):
        self.released += len(handles)
        handles.clear()

    def factorize(self, A):
        self.factorize_calls += 1
        if self.singular:
            raise SingularMatrixError("scripted singular matrix", info=1)
        return Factorization(lu=A.copy(), piv=np.arange(A.shape[0]), n=A.shape[0],
                             backend_name=self.name)

    def solve(self, factorization, rhs):
        self._check_factorization(factorization)
        self.solve_calls += 1
        if self.fail_on_solve is not None and self.solve_calls == self.fail_on_solve:
            raise SolveError("scripted solve failure", info=-1)
        rhs[...] = 1.0
        return rhs

    def residual(self, A, x, b, out):
        self.residual_calls += 1
        out[...] = b - A @ x
        return out

    def norm2(self, v):
        if not self.norms:
            raise AssertionError("residual norm script exhausted")
        return self.norms.pop(0)

    def axpy(self, alpha, x, y):
        y += alpha * x
        return y

    def copy(self, src, dst):
        dst[...] = src
        return dst


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def scripted_backend():
    """Factory for ScriptedBackend instances."""
    return ScriptedBackend


@pytest.fixture
def small_system():
    """3x3 system (flat column-major) with all-ones solution."""
    M = np.array([[4.0, 1.0, 0.0],
                  [1.0, 3.0, 1.0],
                  [0.0, 1.0, 2.0]])
    return M.ravel(order="F"), M.sum(axis=1)


@pytest.fixture
def demo():
    """The 10x10 demo system: flat column-major A and row-sum b."""
    return demo_system()


@pytest.fixture
def singular_system():
    """Demo matrix with its fourth row zeroed (flat column-major)."""
    A, _ = demo_system()
    M = A.reshape((DEMO_N, DEMO_N), order="F").copy()
    M[3, :] = 0.0
    return M.ravel(order="F"), M.sum(axis=1)


@pytest.fixture
def check_trace():
    """Assert the properties every normally-terminated trace satisfies."""
    def check(trace, max_iter):
        norms = trace.residual_norms
        assert 1 <= len(norms) <= max_iter + 1
        assert trace.corrections == len(norms) - 1
        assert [entry.iteration for entry in trace] == list(range(len(norms)))
        # Strictly decreasing before the stop entry
        for prev, cur in zip(norms[:-2], norms[1:-1]):
            assert cur < prev
    return check
