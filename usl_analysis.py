#!/usr/bin/env python3
"""
Universal Scalability Law regression

The Universal Scalability Law (USL) models how throughput scales with concurrency.
It helps identify contention and coherency delays that limit scalability.

USL Formula: C(N) = N * C(1) / (1 + σ(N-1) + κN(N-1))
Where:
- C(N) = Throughput at concurrency N
- C(1) = Single-user throughput
- σ = Contention coefficient (serialization)
- κ = Coherency coefficient (crosstalk/coordination overhead)

Fitting the USL directly is prone to local minima, so it runs in two stages:
1. Quadratic seed: with x = N-1 and y = N/(C/C(1)) - 1 the USL becomes
   y = κx² + (σ+κ)x, a polynomial that fits reliably.
2. USL refit: the true model is refitted starting from the seed σ = b-a, κ = a.
"""

import warnings
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Tuple

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from usl_dataset import Dataset, FitConvergenceError


@dataclass(frozen=True)
class FitResult:
    """Outcome of one regression stage"""

    parameters: Dict[str, float] = field(default_factory=dict)
    standard_errors: Dict[str, float] = field(default_factory=dict)
    converged: bool = False
    r_squared: float = 0.0
    message: str = ""


def usl_function(N, sigma, kappa, c1=1.0):
    """Universal Scalability Law function"""
    return N * c1 / (1 + sigma * (N - 1) + kappa * N * (N - 1))


def quadratic_function(x, a, b):
    """Deviation from linear scaling, y = ax² + bx"""
    return a * x ** 2 + b * x


def coefficient_of_determination(observed, predicted, centered: bool = True) -> float:
    """R² = 1 - SSres/SStot; SStot is taken around the mean unless centered is False"""
    observed = np.asarray(observed, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    ss_res = float(np.sum((observed - predicted) ** 2))
    if centered:
        ss_tot = float(np.sum((observed - np.mean(observed)) ** 2))
    else:
        ss_tot = float(np.sum(observed ** 2))
    if ss_tot == 0:
        return 1.0 if np.isclose(ss_res, 0) else 0.0
    return 1 - ss_res / ss_tot


class CurveFitSolver:
    """Nonlinear least squares via scipy's Levenberg-Marquardt curve_fit"""

    def __init__(self, maxfev: int = 10000):
        self.maxfev = maxfev

    def fit(
        self,
        model_fn: Callable,
        initial_params: Dict[str, float],
        data: Tuple[np.ndarray, np.ndarray],
    ) -> FitResult:
        names = list(initial_params)
        x, y = data

        if len(x) < len(names):
            return FitResult(
                converged=False,
                message=f"{len(x)} points cannot determine {len(names)} parameters",
            )

        try:
            with warnings.catch_warnings():
                # Covariance is inf when there are no spare degrees of freedom
                warnings.simplefilter("ignore", OptimizeWarning)
                popt, pcov, _, mesg, ier = curve_fit(
                    model_fn,
                    x,
                    y,
                    p0=[initial_params[name] for name in names],
                    maxfev=self.maxfev,
                    full_output=True,
                )
        except (RuntimeError, ValueError) as e:
            return FitResult(converged=False, message=str(e))

        if ier not in (1, 2, 3, 4) or not np.all(np.isfinite(popt)):
            return FitResult(converged=False, message=mesg)

        errors = np.sqrt(np.abs(np.diag(pcov)))
        return FitResult(
            parameters={name: float(value) for name, value in zip(names, popt)},
            standard_errors={name: float(err) for name, err in zip(names, errors)},
            converged=True,
            message=mesg,
        )


class QuadraticSeedFitter:
    """Fits y = ax² + bx to the transformed deviation curve"""

    def __init__(self, solver=None):
        self.solver = solver or CurveFitSolver()

    @staticmethod
    def transform(dataset: Dataset, c1: float) -> Tuple[np.ndarray, np.ndarray]:
        usable = [s for s in dataset if s.n > 0 and s.c > 0]
        n = np.array([s.n for s in usable], dtype=float)
        c = np.array([s.c for s in usable], dtype=float)
        return n - 1, n / (c / c1) - 1

    def fit(self, dataset: Dataset, c1: float) -> FitResult:
        x, y = self.transform(dataset, c1)

        if np.count_nonzero(x) < 2:
            return FitResult(converged=False, message="fewer than 2 points with N != 1")
        if np.allclose(y, 0):
            return FitResult(converged=False, message="deviation from linear scaling is zero everywhere")

        result = self.solver.fit(quadratic_function, {"a": 0.0, "b": 0.0}, (x, y))
        if not result.converged:
            return result

        fitted = quadratic_function(x, result.parameters["a"], result.parameters["b"])
        return replace(result, r_squared=coefficient_of_determination(y, fitted, centered=False))


class USLFitter:
    """
    Refits the true USL over the dataset plus the anchor sample (1, C(1)),
    seeded from the quadratic stage. C(1) stays fixed unless fit_c1 is set.
    """

    def __init__(self, solver=None, fit_c1: bool = False):
        self.solver = solver or CurveFitSolver()
        self.fit_c1 = fit_c1

    @staticmethod
    def seed(quadratic: FitResult) -> Tuple[float, float]:
        a = quadratic.parameters["a"]
        b = quadratic.parameters["b"]
        return b - a, a

    @staticmethod
    def _points(dataset: Dataset, c1: float) -> Tuple[np.ndarray, np.ndarray]:
        extended = dataset.with_anchor(c1).positive()
        return extended.concurrency, extended.throughput

    def _finish(self, result: FitResult, n: np.ndarray, c: np.ndarray) -> FitResult:
        p = result.parameters
        predicted = usl_function(n, p["sigma"], p["kappa"], p["c1"])
        return replace(result, r_squared=coefficient_of_determination(c, predicted))

    def fit(self, dataset: Dataset, c1: float, quadratic: FitResult) -> FitResult:
        if not quadratic.converged:
            return FitResult(converged=False, message=quadratic.message)
        n, c = self._points(dataset, c1)
        sigma, kappa = self.seed(quadratic)

        required = 3 if self.fit_c1 else 2
        effective = len(n) if self.fit_c1 else int(np.count_nonzero(n != 1))
        if effective < required:
            return FitResult(
                converged=False,
                message=f"{effective} usable points cannot determine {required} parameters",
            )
        if np.allclose(c, 0):
            return FitResult(converged=False, message="throughput is zero everywhere")

        if self.fit_c1:
            result = self.solver.fit(usl_function, {"sigma": sigma, "kappa": kappa, "c1": c1}, (n, c))
        else:

            def model(N, sigma, kappa):
                return usl_function(N, sigma, kappa, c1)

            result = self.solver.fit(model, {"sigma": sigma, "kappa": kappa}, (n, c))
            if result.converged:
                result = replace(
                    result,
                    parameters={**result.parameters, "c1": c1},
                    standard_errors={**result.standard_errors, "c1": 0.0},
                )

        if not result.converged:
            return result
        return self._finish(result, n, c)

    def from_quadratic(self, dataset: Dataset, c1: float, quadratic: FitResult) -> FitResult:
        """Skip the second regression and take σ, κ straight from the seed"""
        if not quadratic.converged:
            return FitResult(converged=False, message=quadratic.message)
        n, c = self._points(dataset, c1)
        sigma, kappa = self.seed(quadratic)
        result = FitResult(
            parameters={"sigma": sigma, "kappa": kappa, "c1": c1},
            standard_errors={"sigma": 0.0, "kappa": 0.0, "c1": 0.0},
            converged=True,
            message="refit skipped",
        )
        return self._finish(result, n, c)


def require_converged(result: FitResult, stage: str) -> FitResult:
    if not result.converged:
        raise FitConvergenceError(stage, result.message)
    return result


def classify_scaling(sigma: float, kappa: float, tolerance: float = 1e-4) -> str:
    """Classify deviation from ideal linear scaling"""
    if sigma < -tolerance or kappa < -tolerance:
        return "superlinear"
    if kappa > tolerance:
        return "coherency-limited"
    if sigma > tolerance:
        return "contention-limited"
    return "linear"


def interpret_usl_coefficients(sigma: float, kappa: float, sigma_err: float = 0.0, kappa_err: float = 0.0) -> List[str]:
    """Interpret USL coefficients and provide insights"""
    interpretation = []

    # Contention coefficient (σ)
    interpretation.append(f"Contention Coefficient (σ): {sigma:.4f} ± {sigma_err:.4f}")
    if sigma < 0.1:
        interpretation.append("  → Low contention: Good serialization characteristics")
    elif sigma < 0.3:
        interpretation.append("  → Moderate contention: Some serialization bottlenecks")
    else:
        interpretation.append("  → High contention: Significant serialization bottlenecks")

    # Coherency coefficient (κ)
    interpretation.append(f"Coherency Coefficient (κ): {kappa:.4f} ± {kappa_err:.4f}")
    if kappa < 0.01:
        interpretation.append("  → Low coherency delay: Minimal coordination overhead")
    elif kappa < 0.05:
        interpretation.append("  → Moderate coherency delay: Some coordination overhead")
    else:
        interpretation.append("  → High coherency delay: Significant coordination overhead")

    classification = classify_scaling(sigma, kappa)
    if classification == "coherency-limited":
        interpretation.append("κ > 0: Throughput peaks and then declines (retrograde scaling)")
    elif classification == "contention-limited":
        interpretation.append("κ ≈ 0: Throughput levels off towards C(1)/σ (Amdahl-like scaling)")
    elif classification == "superlinear":
        interpretation.append("σ < 0 or κ < 0: Throughput grows faster than linear (superlinear scaling)")
    else:
        interpretation.append("σ ≈ κ ≈ 0: Scaling is close to linear")

    total_overhead = sigma + kappa
    if total_overhead < 0.1:
        interpretation.append("Overall Assessment: Excellent scalability")
    elif total_overhead < 0.3:
        interpretation.append("Overall Assessment: Good scalability with some limitations")
    elif total_overhead < 0.5:
        interpretation.append("Overall Assessment: Limited scalability")
    else:
        interpretation.append("Overall Assessment: Poor scalability")

    return interpretation
