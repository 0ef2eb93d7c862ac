#!/usr/bin/env python3
"""
Render USL model chart series to image files

Each selected chart in a ModelReport becomes one file named
<output_prefix><chart name>.<png|eps|pdf>.
"""

from typing import Dict, List

import matplotlib.pyplot as plt

from usl_config import UslOptions
from usl_report import ChartSeries, ModelReport

LINE_STYLES = {
    "usl model": "b-",
    "quadratic fit": "b-",
    "linear scaling": "k:",
    "lower bound": "g--",
    "upper bound": "g--",
}


def draw_chart(ax, chart: ChartSeries, options: UslOptions):
    """Draw one chart's series onto an axes"""
    for label, (x, y) in chart.series.items():
        style = LINE_STYLES.get(label)
        if style:
            ax.plot(x, y, style, linewidth=2 if style == "b-" else 1, alpha=0.8, label=label)
        else:
            ax.scatter(
                x,
                y,
                color=options.point_color,
                marker=options.point_type,
                s=60,
                zorder=5,
                alpha=0.8,
                label=label,
            )

    for label, position in chart.markers.items():
        ax.axvline(position, color="green", linestyle="--", alpha=0.7, label=f"{label} = {position:g}")

    ax.set_xlabel(chart.x_label)
    ax.set_ylabel(chart.y_label)
    ax.set_title(chart.title)
    if options.x_axis_limit > 0 and chart.name == "model-vs-actual":
        ax.set_xlim(0, options.x_axis_limit)
    ax.grid(True, alpha=0.3)
    ax.legend()


def render_charts(report: ModelReport, options: UslOptions) -> List[str]:
    """Save every selected chart; returns the written file names"""
    written = []
    charts: Dict[str, ChartSeries] = report.select(options.selected_charts)

    for name, chart in charts.items():
        fig, ax = plt.subplots(figsize=(10, 7))
        try:
            draw_chart(ax, chart, options)
            fig.tight_layout()
            output_file = f"{options.output_prefix}{name}.{options.image_extension}"
            fig.savefig(output_file, dpi=150, bbox_inches="tight", format=options.image_extension)
            written.append(output_file)
        finally:
            plt.close(fig)

    return written
