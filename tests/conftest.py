"""
Pytest configuration file for USL model tests.
This file contains shared fixtures and configuration for all tests.
"""

import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from usl_analysis import FitResult, usl_function
from usl_dataset import Dataset, Sample


class ScriptedSolver:
    """
    Solver stub that returns pre-scripted FitResults in order and records
    every call, so convergence paths can be exercised deterministically.
    """

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def fit(self, model_fn, initial_params, data):
        self.calls.append((model_fn, dict(initial_params), data))
        return self.results.pop(0)


@pytest.fixture
def scripted_solver():
    """Factory fixture building a ScriptedSolver from FitResults"""
    return ScriptedSolver


@pytest.fixture
def usl_params():
    """Known USL parameters (sigma, kappa, C1) used to generate exact data"""
    return 0.05, 0.002, 1000.0


@pytest.fixture
def exact_dataset(usl_params):
    """
    Dataset generated exactly from the USL formula, including N = 1.

    Returns:
        Dataset: samples at N = 1, 2, 4, 8, 16, 32, 64 with no noise.
    """
    sigma, kappa, c1 = usl_params
    return Dataset(tuple(Sample(float(n), float(usl_function(n, sigma, kappa, c1))) for n in (1, 2, 4, 8, 16, 32, 64)))


@pytest.fixture
def small_dataset():
    """The four-point dataset from the end-to-end scenario"""
    return Dataset((Sample(1, 100), Sample(2, 190), Sample(4, 330), Sample(8, 480)))


@pytest.fixture
def converged_quadratic():
    return FitResult(
        parameters={"a": 0.01, "b": 0.06},
        standard_errors={"a": 0.001, "b": 0.002},
        converged=True,
        r_squared=0.99,
    )


@pytest.fixture
def dataset_file(tmp_path):
    """Writes the end-to-end dataset to a file with comments and returns its path"""
    path = tmp_path / "data.txt"
    path.write_text("# N C\n1 100\n2 190\n   # indented comment\n\n4 330\n8 480\n")
    return path
