#!/usr/bin/env python3
"""
Options for a USL modelling run

One explicit, immutable options record is built per run and passed through
the pipeline. Options come from dataclass defaults, optionally a YAML file,
and finally command-line flags.

Example options file:

    conversion_mode: counter_snapshots
    aggregation_interval: 10
    max_valid_concurrency: 64
    only_outputs: [model-vs-actual, efficiency]
    image_format: vector-pdf
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, FrozenSet, Optional

import yaml

from usl_dataset import ConfigurationError

CHART_NAMES = (
    "efficiency",
    "deviation",
    "quadratic-residuals",
    "quadratic-residuals-squared",
    "usl-residuals-squared",
    "model-vs-actual",
)

AXIS_LABELS = {"concurrency": "Concurrency (N)", "node count": "Node count (N)"}
CONVERSION_MODES = ("none", "counter_snapshots", "packet_trace")
IMAGE_FORMATS = {"raster": "png", "vector-eps": "eps", "vector-pdf": "pdf"}

# MySQL
DEFAULT_WATCH_PORT = 3306


@dataclass(frozen=True)
class UslOptions:
    """Configuration for conversion, fitting and output"""

    axis_label: str = "concurrency"
    conversion_mode: str = "none"
    keep_intermediate_files: bool = False
    draw_error_band: bool = False
    aggregation_interval: float = 1.0
    keep_dataset_path: Optional[str] = None
    x_axis_limit: float = 0.0
    point_color: str = "red"
    max_valid_concurrency: int = 0
    concurrency_adjustment: int = 0
    only_outputs: FrozenSet[str] = frozenset()
    output_prefix: str = ""
    watch_port: int = DEFAULT_WATCH_PORT
    color_output: bool = False
    skip_refit: bool = False
    image_format: str = "raster"
    point_type: str = "o"
    c1_scale_factor: float = 1.0
    fit_c1_as_parameter: bool = False

    def __post_init__(self):
        object.__setattr__(self, "only_outputs", frozenset(self.only_outputs))

    @property
    def selected_charts(self):
        """Chart names to produce, in canonical order"""
        if not self.only_outputs:
            return CHART_NAMES
        return tuple(name for name in CHART_NAMES if name in self.only_outputs)

    @property
    def image_extension(self) -> str:
        return IMAGE_FORMATS[self.image_format]

    @property
    def axis_title(self) -> str:
        return AXIS_LABELS[self.axis_label]

    def validate(self) -> "UslOptions":
        if self.conversion_mode not in CONVERSION_MODES:
            raise ConfigurationError(
                f"unknown conversion mode '{self.conversion_mode}' (expected one of {', '.join(CONVERSION_MODES)})"
            )
        if self.image_format not in IMAGE_FORMATS:
            raise ConfigurationError(
                f"unknown image format '{self.image_format}' (expected one of {', '.join(IMAGE_FORMATS)})"
            )
        if self.axis_label not in AXIS_LABELS:
            raise ConfigurationError(f"unknown axis label '{self.axis_label}'")
        unknown = sorted(self.only_outputs - set(CHART_NAMES))
        if unknown:
            raise ConfigurationError(f"unknown chart name(s): {', '.join(unknown)}")
        if self.aggregation_interval <= 0:
            raise ConfigurationError("aggregation interval must be positive")
        if self.c1_scale_factor <= 0:
            raise ConfigurationError("C(1) scale factor must be positive")
        if self.max_valid_concurrency < 0:
            raise ConfigurationError("max valid concurrency must not be negative")
        if self.concurrency_adjustment < 0:
            raise ConfigurationError("concurrency adjustment must not be negative")
        if self.x_axis_limit < 0:
            raise ConfigurationError("x axis limit must not be negative")
        if not 0 < self.watch_port < 65536:
            raise ConfigurationError(f"watch port {self.watch_port} is out of range")
        return self


def option_names():
    return [f.name for f in fields(UslOptions)]


def normalize_keys(values: Dict[str, Any]) -> Dict[str, Any]:
    """Accept hyphenated keys and reject unknown ones"""
    known = set(option_names())
    normalized = {}
    for key, value in values.items():
        name = str(key).replace("-", "_")
        if name not in known:
            raise ConfigurationError(f"unknown option '{key}'")
        normalized[name] = value
    return normalized


def load_options_file(path: str) -> Dict[str, Any]:
    """Read option values from a YAML file"""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read options file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in options file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"options file {path} must contain a mapping")
    return normalize_keys(data)


def build_options(file_values: Optional[Dict[str, Any]] = None, **overrides) -> UslOptions:
    """Layer defaults, file values and explicit overrides (None means unset)"""
    values = dict(file_values or {})
    values.update({k: v for k, v in normalize_keys(overrides).items() if v is not None})
    if "only_outputs" in values and isinstance(values["only_outputs"], str):
        values["only_outputs"] = [name.strip() for name in values["only_outputs"].split(",") if name.strip()]
    try:
        return replace(UslOptions(), **values).validate()
    except TypeError as e:
        raise ConfigurationError(str(e))
