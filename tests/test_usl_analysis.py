import numpy as np
import pytest

from usl_analysis import (
    CurveFitSolver,
    FitResult,
    QuadraticSeedFitter,
    USLFitter,
    classify_scaling,
    coefficient_of_determination,
    interpret_usl_coefficients,
    quadratic_function,
    require_converged,
    usl_function,
)
from usl_dataset import Dataset, FitConvergenceError, Sample, estimate_c1


class TestCurveFitSolver:
    """Test cases for the scipy-backed solver"""

    def test_fits_a_line(self):
        x = np.array([1.0, 2.0, 3.0, 4.0])
        result = CurveFitSolver().fit(lambda x, m: m * x, {"m": 1.0}, (x, 2.5 * x))
        assert result.converged
        assert result.parameters["m"] == pytest.approx(2.5)
        assert result.standard_errors["m"] == pytest.approx(0.0, abs=1e-9)

    def test_too_few_points(self):
        x = np.array([1.0])
        result = CurveFitSolver().fit(quadratic_function, {"a": 0.0, "b": 0.0}, (x, x))
        assert not result.converged
        assert "cannot determine" in result.message

    def test_solver_failure_is_reported_not_raised(self):
        x = np.array([1.0, 2.0, 3.0])
        y = np.array([1.0, np.nan, 3.0])
        result = CurveFitSolver().fit(lambda x, m: m * x, {"m": 1.0}, (x, y))
        assert not result.converged


class TestQuadraticSeedFitter:
    """Test cases for the deviation-curve seed fit"""

    def test_transform(self, small_dataset):
        x, y = QuadraticSeedFitter.transform(small_dataset, 100.0)
        assert list(x) == [0, 1, 3, 7]
        assert y[0] == pytest.approx(0.0)
        assert y[1] == pytest.approx(2 / 1.9 - 1)
        assert y[3] == pytest.approx(8 / 4.8 - 1)

    def test_exact_data(self, exact_dataset, usl_params):
        sigma, kappa, c1 = usl_params
        result = QuadraticSeedFitter().fit(exact_dataset, c1)
        assert result.converged
        assert result.parameters["a"] == pytest.approx(kappa, rel=1e-6)
        assert result.parameters["b"] == pytest.approx(sigma + kappa, rel=1e-6)
        assert result.r_squared == pytest.approx(1.0)

    def test_fewer_than_two_points(self):
        dataset = Dataset((Sample(1, 100), Sample(2, 150)))
        result = QuadraticSeedFitter().fit(dataset, 100.0)
        assert not result.converged

    def test_degenerate_linear_scaling(self):
        dataset = Dataset(tuple(Sample(n, 100.0 * n) for n in (1, 2, 3, 4)))
        result = QuadraticSeedFitter().fit(dataset, 100.0)
        assert not result.converged
        assert "zero" in result.message

    def test_solver_non_convergence_passes_through(self, small_dataset, scripted_solver):
        solver = scripted_solver(FitResult(converged=False, message="maxfev reached"))
        result = QuadraticSeedFitter(solver).fit(small_dataset, 100.0)
        assert not result.converged
        assert result.message == "maxfev reached"
        assert list(solver.calls[0][1]) == ["a", "b"]


class TestUSLFitter:
    """Test cases for the USL refit stage"""

    def test_recovers_known_parameters(self, exact_dataset, usl_params):
        sigma, kappa, c1 = usl_params
        anchor = estimate_c1(exact_dataset)
        quadratic = QuadraticSeedFitter().fit(exact_dataset, anchor)
        result = USLFitter().fit(exact_dataset, anchor, quadratic)
        assert result.converged
        assert result.parameters["sigma"] == pytest.approx(sigma, rel=1e-6)
        assert result.parameters["kappa"] == pytest.approx(kappa, rel=1e-6)
        assert result.parameters["c1"] == c1
        assert result.standard_errors["c1"] == 0.0
        assert result.r_squared == pytest.approx(1.0)

    def test_recovers_c1_as_free_parameter(self, exact_dataset, usl_params):
        sigma, kappa, c1 = usl_params
        quadratic = QuadraticSeedFitter().fit(exact_dataset, c1)
        result = USLFitter(fit_c1=True).fit(exact_dataset, c1, quadratic)
        assert result.converged
        assert result.parameters["c1"] == pytest.approx(c1, rel=1e-6)
        assert result.parameters["sigma"] == pytest.approx(sigma, rel=1e-5)

    def test_seed_from_quadratic(self, small_dataset, converged_quadratic, scripted_solver):
        solver = scripted_solver(FitResult(converged=False))
        USLFitter(solver).fit(small_dataset, 100.0, converged_quadratic)
        model_fn, initial, (n, c) = solver.calls[0]
        assert initial == {"sigma": pytest.approx(0.05), "kappa": pytest.approx(0.01)}
        # dataset plus the explicit anchor sample
        assert list(n) == [1, 2, 4, 8, 1]
        assert c[-1] == 100.0

    def test_fewer_than_two_points(self, converged_quadratic):
        dataset = Dataset((Sample(1, 100), Sample(2, 150)))
        result = USLFitter().fit(dataset, 100.0, converged_quadratic)
        assert not result.converged

    def test_zero_throughput_is_degenerate(self, converged_quadratic):
        dataset = Dataset((Sample(2, 0), Sample(3, 0), Sample(4, 0)))
        result = USLFitter().fit(dataset, 0.0, converged_quadratic)
        assert not result.converged

    def test_unconverged_seed(self, small_dataset):
        result = USLFitter().fit(small_dataset, 100.0, FitResult(converged=False, message="no seed"))
        assert not result.converged
        assert result.message == "no seed"

    def test_skip_refit_uses_seed(self, small_dataset, converged_quadratic, scripted_solver):
        solver = scripted_solver()
        result = USLFitter(solver).from_quadratic(small_dataset, 100.0, converged_quadratic)
        assert solver.calls == []
        assert result.converged
        assert result.parameters == {"sigma": pytest.approx(0.05), "kappa": 0.01, "c1": 100.0}
        assert result.standard_errors == {"sigma": 0.0, "kappa": 0.0, "c1": 0.0}
        assert 0 < result.r_squared <= 1


class TestHelpers:
    def test_usl_function_at_one_is_c1(self):
        assert usl_function(1, 0.3, 0.1, 42.0) == 42.0

    def test_r_squared(self):
        assert coefficient_of_determination([1, 2, 3], [1, 2, 3]) == 1.0
        assert coefficient_of_determination([1, 2, 3], [2, 2, 2]) == 0.0
        assert coefficient_of_determination([1, 1], [0, 0], centered=False) == 0.0

    def test_require_converged(self):
        with pytest.raises(FitConvergenceError) as excinfo:
            require_converged(FitResult(converged=False, message="boom"), "quadratic")
        assert excinfo.value.stage == "quadratic"
        ok = FitResult(converged=True)
        assert require_converged(ok, "usl") is ok

    @pytest.mark.parametrize(
        "sigma,kappa,expected",
        [
            (0.0, 0.0, "linear"),
            (0.2, 0.0, "contention-limited"),
            (0.05, 0.01, "coherency-limited"),
            (-0.015, -0.0001, "superlinear"),
            (0.0, -0.01, "superlinear"),
            (-0.02, 0.001, "superlinear"),
        ],
    )
    def test_classify_scaling(self, sigma, kappa, expected):
        assert classify_scaling(sigma, kappa) == expected

    def test_interpretation(self):
        lines = interpret_usl_coefficients(0.05, 0.06)
        assert any("Low contention" in line for line in lines)
        assert any("High coherency" in line for line in lines)
        assert any("retrograde" in line for line in lines)

    def test_superlinear_interpretation(self):
        lines = interpret_usl_coefficients(-0.0148, -0.000137)
        assert any("superlinear" in line for line in lines)
        assert not any("close to linear" in line for line in lines)
