#!/usr/bin/env python3
"""
Concurrency/throughput samples for Universal Scalability Law analysis

A dataset is an ordered list of (N, C) samples:
- N = concurrency (simultaneous requests, users or nodes)
- C = throughput measured at that concurrency

Dataset files are whitespace separated text, one sample per line:

    # N   C
    1     955.16
    2     1878.91
    4     3548.68

Lines whose first non-blank character is '#' are comments.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple

import numpy as np


class UslError(Exception):
    """Base class for all errors raised while building a USL model"""


class InputError(UslError):
    """Unreadable or malformed input data"""


class ConfigurationError(UslError):
    """Unknown or unsupported option value"""


class InsufficientDataError(UslError):
    """Not enough usable samples to estimate the model"""


class FitConvergenceError(UslError):
    """A regression stage did not converge"""

    def __init__(self, stage: str, message: str = ""):
        self.stage = stage
        self.message = message
        text = f"{stage} fit did not converge"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


@dataclass(frozen=True)
class Sample:
    """One (concurrency, throughput) observation"""

    n: float
    c: float


@dataclass(frozen=True)
class Dataset:
    """Ordered, immutable sequence of samples"""

    samples: Tuple[Sample, ...]

    def __post_init__(self):
        object.__setattr__(self, "samples", tuple(self.samples))

    def __len__(self):
        return len(self.samples)

    def __iter__(self):
        return iter(self.samples)

    @property
    def concurrency(self) -> np.ndarray:
        return np.array([s.n for s in self.samples], dtype=float)

    @property
    def throughput(self) -> np.ndarray:
        return np.array([s.c for s in self.samples], dtype=float)

    def positive(self) -> "Dataset":
        """Samples with N > 0"""
        return Dataset(tuple(s for s in self.samples if s.n > 0))

    @property
    def min_n(self) -> float:
        positive = [s.n for s in self.samples if s.n > 0]
        if not positive:
            raise InsufficientDataError("dataset has no samples with positive concurrency")
        return min(positive)

    @property
    def max_n(self) -> float:
        if not self.samples:
            raise InsufficientDataError("dataset is empty")
        return max(s.n for s in self.samples)

    @property
    def max_c(self) -> float:
        if not self.samples:
            raise InsufficientDataError("dataset is empty")
        return max(s.c for s in self.samples)

    def with_anchor(self, c1: float) -> "Dataset":
        """Return a copy extended with the explicit anchor sample (1, C(1))"""
        return Dataset(self.samples + (Sample(1.0, c1),))


def parse_dataset(lines: Iterable[str], source: str = "<input>") -> Dataset:
    """Parse dataset text lines into a Dataset"""
    samples: List[Sample] = []

    for lineno, line in enumerate(lines, 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        fields = stripped.split()
        if len(fields) < 2:
            raise InputError(f"{source}:{lineno}: expected two columns, got '{stripped}'")

        try:
            n, c = float(fields[0]), float(fields[1])
        except ValueError:
            raise InputError(f"{source}:{lineno}: non-numeric sample '{stripped}'")

        if not (np.isfinite(n) and np.isfinite(c)):
            raise InputError(f"{source}:{lineno}: non-finite sample '{stripped}'")
        if c < 0:
            raise InputError(f"{source}:{lineno}: negative throughput {c}")

        samples.append(Sample(n, c))

    return Dataset(tuple(samples))


def load_dataset(path: str) -> Dataset:
    """Load a dataset file"""
    try:
        with open(path, "r") as f:
            return parse_dataset(f, source=path)
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"cannot read dataset {path}: {e}")


def format_value(value: float) -> str:
    """Shortest text that reads back as the same float, integers without a fraction"""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def save_dataset(dataset: Dataset, path: str, header: str = "N C"):
    """Write a dataset in the two-column text format"""
    try:
        with open(path, "w") as f:
            f.write(f"# {header}\n")
            for s in dataset:
                f.write(f"{format_value(s.n)} {format_value(s.c)}\n")
    except OSError as e:
        raise InputError(f"cannot write dataset {path}: {e}")


def estimate_c1(dataset: Dataset) -> float:
    """
    Find or estimate C(1), the single-user throughput.

    Averages C over the samples at N = 1 when there are any. Otherwise averages
    C at the smallest positive N and divides by that N.
    """
    positive = dataset.positive()
    if not positive.samples:
        raise InsufficientDataError("no samples with positive concurrency to estimate C(1)")

    at_one = [s.c for s in positive if s.n == 1]
    if at_one:
        c1 = float(np.mean(at_one))
    else:
        min_n = positive.min_n
        c1 = float(np.mean([s.c for s in positive if s.n == min_n])) / min_n

    if c1 <= 0:
        raise InsufficientDataError(f"estimated single-user throughput C(1) is {c1:g}")
    return c1
