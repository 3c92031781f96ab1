"""
Tests for the refinement engine control flow.

A scripted backend supplies the residual norms, so every termination path
can be driven exactly and the calls the engine makes can be counted.
"""

import numpy as np
import pytest

from refinement_solver import refine, TerminationReason
from refinement_solver.engine import DEFAULT_MAX_ITER
from refinement_solver.exceptions import (
    DimensionError,
    SingularMatrixError,
    SolveError,
    ValidationError,
)


def _run(backend, small_system, max_iter=DEFAULT_MAX_ITER):
    A, b = small_system
    x = np.zeros(3)
    trace = refine(backend, A, b, x, max_iter=max_iter)
    return x, trace


class TestTermination:

    def test_stall_after_improvement(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[1e-1, 1e-3, 1e-3])
        x, trace = _run(backend, small_system)

        assert trace.reason is TerminationReason.STALLED
        assert trace.residual_norms == [1e-1, 1e-3, 1e-3]
        assert trace.stop_iteration == 2
        assert trace.corrections == 2
        # Initial solve plus one per correction
        assert backend.solve_calls == 3

    def test_first_non_improving_step_is_stop_point(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[5.0, 4.0, 3.0, 3.5, 1.0])
        _, trace = _run(backend, small_system)

        assert trace.reason is TerminationReason.STALLED
        assert trace.stop_iteration == 3
        # The remaining scripted value was never requested
        assert backend.norms == [1.0]

    def test_first_iteration_grace(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[1e30, 1.0, 2.0])
        _, trace = _run(backend, small_system)

        assert trace.stop_iteration == 2
        assert trace.corrections == 2

    def test_exact_residual(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[1e-3, 0.0])
        _, trace = _run(backend, small_system)

        assert trace.reason is TerminationReason.EXACT_RESIDUAL
        assert trace.corrections == 1

    def test_exact_residual_after_initial_solve(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[0.0])
        _, trace = _run(backend, small_system)

        assert trace.reason is TerminationReason.EXACT_RESIDUAL
        assert trace.corrections == 0
        assert backend.solve_calls == 1

    def test_max_iterations(self, scripted_backend, small_system, check_trace):
        backend = scripted_backend(norms=[4.0, 3.0, 2.0, 1.0])
        _, trace = _run(backend, small_system, max_iter=3)

        assert trace.reason is TerminationReason.MAX_ITERATIONS
        assert len(trace) == 4
        assert trace.corrections == 3
        assert backend.solve_calls == 4
        check_trace(trace, 3)

    def test_max_iter_zero(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[1e-3])
        _, trace = _run(backend, small_system, max_iter=0)

        assert trace.reason is TerminationReason.MAX_ITERATIONS
        assert trace.residual_norms == [1e-3]
        assert trace.corrections == 0
        assert backend.solve_calls == 1

    def test_max_iter_zero_exact(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[0.0])
        _, trace = _run(backend, small_system, max_iter=0)

        assert trace.reason is TerminationReason.EXACT_RESIDUAL

    def test_stall_on_last_allowed_iteration(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[2.0, 1.0, 1.0])
        _, trace = _run(backend, small_system, max_iter=2)

        assert trace.reason is TerminationReason.STALLED


class TestEngineBehavior:

    def test_factorizes_exactly_once(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[5.0, 4.0, 3.0, 2.0, 1.0])
        _run(backend, small_system, max_iter=4)
        assert backend.factorize_calls == 1

    def test_residual_each_iteration(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[5.0, 4.0, 4.0])
        _run(backend, small_system)
        assert backend.residual_calls == 3

    def test_solution_written_into_x(self, scripted_backend, small_system):
        # The scripted solve returns all ones; corrections add them to x
        backend = scripted_backend(norms=[1e-3, 1e-3])
        x, trace = _run(backend, small_system)
        np.testing.assert_array_equal(x, np.full(3, 2.0))
        assert trace.corrections == 1

    def test_inputs_not_modified(self, scripted_backend, small_system):
        A, b = small_system
        A0, b0 = A.copy(), b.copy()
        refine(scripted_backend(norms=[1.0, 1.0]), A, b, np.zeros(3))
        np.testing.assert_array_equal(A, A0)
        np.testing.assert_array_equal(b, b0)

    def test_workspace_released(self, scripted_backend, small_system):
        backend = scripted_backend(norms=[1.0, 1.0])
        _run(backend, small_system)
        # A, b, x, r, z and the factorization
        assert backend.released == 6

    def test_backend_name_on_trace(self, scripted_backend, small_system):
        _, trace = _run(scripted_backend(norms=[0.0]), small_system)
        assert trace.backend_name == "scripted"

    def test_timings_recorded(self, scripted_backend, small_system):
        _, trace = _run(scripted_backend(norms=[1.0, 1.0]), small_system)
        assert trace.factorize_time >= 0.0
        assert trace.solve_time >= 0.0

    def test_no_output(self, scripted_backend, small_system, capsys):
        _run(scripted_backend(norms=[1.0, 0.5, 0.5]), small_system)
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_iterations_logged_at_debug(self, scripted_backend, small_system, caplog):
        with caplog.at_level("DEBUG", logger="refinement_solver"):
            _run(scripted_backend(norms=[1.0, 0.5, 0.5]), small_system)
        debug = [r for r in caplog.records
                 if r.levelname == "DEBUG" and r.name.startswith("refinement_solver")]
        assert len(debug) == 3
        assert "iter 0" in debug[0].getMessage()


class TestFailures:

    def test_singular_matrix(self, scripted_backend, small_system):
        A, b = small_system
        backend = scripted_backend(singular=True)
        x = np.full(3, 7.0)

        with pytest.raises(SingularMatrixError) as excinfo:
            refine(backend, A, b, x)

        assert backend.solve_calls == 0
        assert backend.residual_calls == 0
        np.testing.assert_array_equal(x, np.full(3, 7.0))
        err = excinfo.value
        assert err.trace.reason is TerminationReason.SINGULAR_MATRIX
        assert err.reason is TerminationReason.SINGULAR_MATRIX
        assert len(err.trace) == 0
        assert err.info == 1

    def test_singular_matrix_releases_workspace(self, scripted_backend, small_system):
        A, b = small_system
        backend = scripted_backend(singular=True)
        with pytest.raises(SingularMatrixError):
            refine(backend, A, b, np.zeros(3))
        # A, b, x, r, z; no factorization was produced
        assert backend.released == 5

    def test_initial_solve_failure(self, scripted_backend, small_system):
        A, b = small_system
        backend = scripted_backend(norms=[1.0], fail_on_solve=1)
        x = np.full(3, 7.0)

        with pytest.raises(SolveError) as excinfo:
            refine(backend, A, b, x)

        assert excinfo.value.iteration is None
        assert len(excinfo.value.trace) == 0
        np.testing.assert_array_equal(x, np.full(3, 7.0))

    def test_correction_solve_failure(self, scripted_backend, small_system):
        A, b = small_system
        backend = scripted_backend(norms=[1.0, 0.5, 0.25], fail_on_solve=3)
        x = np.full(3, 7.0)

        with pytest.raises(SolveError) as excinfo:
            refine(backend, A, b, x)

        err = excinfo.value
        assert err.iteration == 1
        assert err.trace.residual_norms == [1.0, 0.5]
        assert err.trace.reason is None
        np.testing.assert_array_equal(x, np.full(3, 7.0))
        assert backend.released == 6


class TestValidation:

    def test_negative_max_iter(self, scripted_backend, small_system):
        A, b = small_system
        with pytest.raises(ValidationError):
            refine(scripted_backend(), A, b, np.zeros(3), max_iter=-1)

    @pytest.mark.parametrize("max_iter", [1.5, True, "3"])
    def test_non_integer_max_iter(self, scripted_backend, small_system, max_iter):
        A, b = small_system
        with pytest.raises(ValidationError):
            refine(scripted_backend(), A, b, np.zeros(3), max_iter=max_iter)

    def test_x_required(self, scripted_backend, small_system):
        A, b = small_system
        with pytest.raises(ValidationError):
            refine(scripted_backend(), A, b, None)

    def test_matrix_length_mismatch(self, scripted_backend, small_system):
        A, b = small_system
        with pytest.raises(DimensionError):
            refine(scripted_backend(), A[:-1], b, np.zeros(3))

    def test_x_length_mismatch(self, scripted_backend, small_system):
        A, b = small_system
        with pytest.raises(DimensionError):
            refine(scripted_backend(), A, b, np.zeros(4))

    def test_nan_in_matrix(self, scripted_backend, small_system):
        A, b = small_system
        A = A.copy()
        A[4] = np.nan
        backend = scripted_backend()
        with pytest.raises(ValidationError):
            refine(backend, A, b, np.zeros(3))
        assert backend.factorize_calls == 0

    def test_x_buffer_contents_ignored(self, scripted_backend, small_system):
        A, b = small_system
        x = np.full(3, np.nan)
        trace = refine(scripted_backend(norms=[0.0]), A, b, x)
        assert trace.reason is TerminationReason.EXACT_RESIDUAL
        np.testing.assert_array_equal(x, np.ones(3))

    def test_inf_in_rhs(self, scripted_backend, small_system):
        A, b = small_system
        b = b.copy()
        b[0] = np.inf
        with pytest.raises(ValidationError):
            refine(scripted_backend(), A, b, np.zeros(3))

    def test_check_finite_disabled(self, scripted_backend, small_system):
        A, b = small_system
        b = b.copy()
        b[0] = np.inf
        trace = refine(scripted_backend(norms=[0.0]), A, b, np.zeros(3), check_finite=False)
        assert trace.reason is TerminationReason.EXACT_RESIDUAL
