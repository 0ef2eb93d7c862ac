#!/usr/bin/env python3
"""
Universal Scalability Law model report

Runs the full fit pipeline over a dataset and collects everything a run
produces: the fitted parameters of both stages, R² values, the predicted
peak capacity, and the numeric series behind each chart. Nothing here draws;
plot_usl.py renders the series.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from usl_analysis import (
    FitResult,
    QuadraticSeedFitter,
    USLFitter,
    classify_scaling,
    interpret_usl_coefficients,
    quadratic_function,
    require_converged,
    usl_function,
)
from usl_config import UslOptions
from usl_dataset import Dataset, estimate_c1

ANSI_BOLD = "\033[1m"
ANSI_CYAN = "\033[36m"
ANSI_RESET = "\033[0m"


@dataclass(frozen=True)
class Model:
    """The deliverable of a run"""

    sigma: float
    kappa: float
    c1: float
    r_squared: float
    peak_n: Optional[int]
    peak_c: Optional[float]


@dataclass(frozen=True)
class ChartSeries:
    """The (x, y) series one chart needs, keyed by series label"""

    name: str
    title: str
    x_label: str
    y_label: str
    series: Dict[str, Tuple[np.ndarray, np.ndarray]] = field(default_factory=dict)
    markers: Dict[str, float] = field(default_factory=dict)


def peak_capacity(sigma: float, kappa: float, c1: float) -> Tuple[Optional[int], Optional[float]]:
    """N* = floor(sqrt((1 - σ) / κ)) and C(N*); None when throughput has no finite peak"""
    if kappa <= 0 or sigma >= 1:
        return None, None
    peak_n = max(1, int(math.floor(math.sqrt((1 - sigma) / kappa))))
    return peak_n, float(usl_function(peak_n, sigma, kappa, c1))


def percent_error(value: float, error: float) -> float:
    if error == 0:
        return 0.0
    if value == 0:
        return math.inf
    return abs(error / value) * 100


@dataclass(frozen=True)
class ModelReport:
    """All results of one modelling run"""

    min_n: float
    max_n: float
    max_c: float
    c1_estimated: float
    c1: float
    quadratic: FitResult
    usl: FitResult
    model: Model
    classification: str
    charts: Dict[str, ChartSeries]

    def select(self, names) -> Dict[str, ChartSeries]:
        return {name: self.charts[name] for name in names if name in self.charts}

    def parameter_rows(self) -> List[Tuple[str, str, float, float, float]]:
        """(stage, parameter, estimate, standard error, % error) rows"""
        rows = []
        for stage, result in (("quadratic", self.quadratic), ("usl", self.usl)):
            for name, value in result.parameters.items():
                error = result.standard_errors.get(name, 0.0)
                rows.append((stage, name, value, error, percent_error(value, error)))
        return rows

    def to_lines(self, color: bool = False) -> List[str]:
        """Key/value report lines"""

        def key(text):
            return f"{ANSI_BOLD}{ANSI_CYAN}{text}{ANSI_RESET}" if color else text

        lines = [
            f"{key('min(N)')} {self.min_n:g}",
            f"{key('max(N)')} {self.max_n:g}",
            f"{key('max(C)')} {self.max_c:g}",
            f"{key('C(1) estimated')} {self.c1_estimated:g}",
            f"{key('C(1)')} {self.c1:g}",
            "",
            f"{'stage':<10} {'parameter':<10} {'estimate':>14} {'std error':>14} {'% error':>10}",
        ]
        for stage, name, value, error, pct in self.parameter_rows():
            lines.append(f"{stage:<10} {name:<10} {value:>14.6g} {error:>14.6g} {pct:>10.2f}")
        lines += [
            "",
            f"{key('R² quadratic')} {self.quadratic.r_squared:.6f}",
            f"{key('R² usl')} {self.usl.r_squared:.6f}",
            f"{key('sigma')} {self.model.sigma:.6g}",
            f"{key('kappa')} {self.model.kappa:.6g}",
        ]
        if self.model.peak_n is None:
            lines += [f"{key('peak N')} unbounded", f"{key('peak C')} unbounded"]
        else:
            lines += [f"{key('peak N')} {self.model.peak_n}", f"{key('peak C')} {self.model.peak_c:g}"]
        lines.append(f"{key('scaling')} {self.classification}")
        lines.append("")
        lines += interpret_usl_coefficients(
            self.model.sigma,
            self.model.kappa,
            self.usl.standard_errors.get("sigma", 0.0),
            self.usl.standard_errors.get("kappa", 0.0),
        )
        return lines


def build_chart_series(
    dataset: Dataset,
    c1: float,
    quadratic: FitResult,
    usl: FitResult,
    model: Model,
    options: UslOptions,
) -> Dict[str, ChartSeries]:
    x_title = options.axis_title
    positive = [s for s in dataset if s.n > 0 and s.c > 0]
    n = np.array([s.n for s in positive], dtype=float)
    c = np.array([s.c for s in positive], dtype=float)

    # Deviation from linear scaling
    x, y = QuadraticSeedFitter.transform(dataset, c1)
    a, b = quadratic.parameters["a"], quadratic.parameters["b"]
    fitted = quadratic_function(x, a, b)
    residuals = y - fitted
    x_grid = np.linspace(0, max(float(x.max()), 1.0), 100)

    # USL over the extended dataset
    extended = dataset.with_anchor(c1).positive()
    ext_n, ext_c = extended.concurrency, extended.throughput
    usl_residuals = ext_c - usl_function(ext_n, model.sigma, model.kappa, model.c1)

    x_limit = options.x_axis_limit
    if x_limit <= 0:
        x_limit = 2 * max(float(ext_n.max()), float(model.peak_n or 0))
    n_grid = np.linspace(1, max(x_limit, 2.0), 200)

    model_series = {
        "measured": (n, c),
        "usl model": (n_grid, usl_function(n_grid, model.sigma, model.kappa, model.c1)),
        "linear scaling": (n_grid, n_grid * model.c1),
    }
    if options.draw_error_band:
        sigma_err = usl.standard_errors.get("sigma", 0.0)
        kappa_err = usl.standard_errors.get("kappa", 0.0)
        if math.isfinite(sigma_err) and math.isfinite(kappa_err):
            model_series["lower bound"] = (
                n_grid,
                usl_function(n_grid, model.sigma + sigma_err, model.kappa + kappa_err, model.c1),
            )
            model_series["upper bound"] = (
                n_grid,
                usl_function(n_grid, max(model.sigma - sigma_err, 0.0), max(model.kappa - kappa_err, 0.0), model.c1),
            )

    markers = {}
    if model.peak_n is not None:
        markers["peak N"] = float(model.peak_n)

    charts = {
        "efficiency": ChartSeries(
            "efficiency",
            "Scaling efficiency",
            x_title,
            "Efficiency (C/C(1)/N)",
            {"measured": (n, (c / c1) / n), "linear scaling": (n, np.ones_like(n))},
        ),
        "deviation": ChartSeries(
            "deviation",
            "Deviation from linear scaling",
            f"{x_title} - 1",
            "N/(C/C(1)) - 1",
            {"measured": (x, y), "quadratic fit": (x_grid, quadratic_function(x_grid, a, b))},
        ),
        "quadratic-residuals": ChartSeries(
            "quadratic-residuals",
            "Quadratic fit residuals",
            f"{x_title} - 1",
            "Residual",
            {"residuals": (x, residuals)},
        ),
        "quadratic-residuals-squared": ChartSeries(
            "quadratic-residuals-squared",
            "Quadratic fit squared residuals",
            f"{x_title} - 1",
            "Residual²",
            {"residuals squared": (x, residuals ** 2)},
        ),
        "usl-residuals-squared": ChartSeries(
            "usl-residuals-squared",
            "USL fit squared residuals",
            x_title,
            "Residual²",
            {"residuals squared": (ext_n, usl_residuals ** 2)},
        ),
        "model-vs-actual": ChartSeries(
            "model-vs-actual",
            f"USL model vs measured (σ={model.sigma:.4f}, κ={model.kappa:.4f})",
            x_title,
            "Throughput (C)",
            model_series,
            markers,
        ),
    }
    return charts


def build_model_report(dataset: Dataset, options: UslOptions, solver=None) -> ModelReport:
    """
    Run the whole fit pipeline: anchor, quadratic seed, USL refit, report.

    Raises InsufficientDataError when there is nothing to anchor on, and
    FitConvergenceError when either regression stage fails.
    """
    c1_estimated = estimate_c1(dataset)
    c1 = c1_estimated * options.c1_scale_factor

    quadratic = require_converged(QuadraticSeedFitter(solver).fit(dataset, c1), "quadratic")

    usl_fitter = USLFitter(solver, fit_c1=options.fit_c1_as_parameter)
    if options.skip_refit:
        usl = usl_fitter.from_quadratic(dataset, c1, quadratic)
    else:
        usl = usl_fitter.fit(dataset, c1, quadratic)
    require_converged(usl, "usl")

    sigma = usl.parameters["sigma"]
    kappa = usl.parameters["kappa"]
    fitted_c1 = usl.parameters["c1"]
    peak_n, peak_c = peak_capacity(sigma, kappa, fitted_c1)
    model = Model(sigma, kappa, fitted_c1, usl.r_squared, peak_n, peak_c)

    return ModelReport(
        min_n=dataset.min_n,
        max_n=dataset.max_n,
        max_c=dataset.max_c,
        c1_estimated=c1_estimated,
        c1=c1,
        quadratic=quadratic,
        usl=usl,
        model=model,
        classification=classify_scaling(sigma, kappa),
        charts=build_chart_series(dataset, c1, quadratic, usl, model, options),
    )
