#!/usr/bin/env python3
"""
Universal Scalability Law capacity modelling tool

Fits the USL to concurrency/throughput measurements, reports contention (σ),
coherency (κ), fit quality and predicted peak capacity, and renders charts.

Input can be a ready (N, C) dataset, repeated `mysqladmin extended-status`
output, or a tcpdump trace of one service port.

Usage:
    python3 usl.py data.txt
    python3 usl.py -m counter_snapshots -i 10 status.txt
    python3 usl.py -m packet_trace -P 5432 trace.txt --keep-intermediate
"""

import argparse
import sys
from contextlib import contextmanager
from typing import List, Optional

from counter_snapshots import CounterSampleConverter, parse_snapshots
from packet_trace import PacketTabulator, TraceParser, WindowAggregator, write_tabulated
from usl_config import (
    AXIS_LABELS,
    CHART_NAMES,
    CONVERSION_MODES,
    IMAGE_FORMATS,
    UslOptions,
    build_options,
    load_options_file,
)
from usl_dataset import (
    Dataset,
    InputError,
    InsufficientDataError,
    UslError,
    parse_dataset,
    save_dataset,
)
from usl_report import build_model_report


@contextmanager
def open_input(path: str):
    """Open a file for reading, '-' meaning stdin"""
    if path == "-":
        yield sys.stdin
        return
    try:
        f = open(path, "r")
    except OSError as e:
        raise InputError(f"cannot read {path}: {e}")
    with f:
        yield f


def convert_counter_snapshots(lines, options: UslOptions) -> Dataset:
    converter = CounterSampleConverter(
        interval=options.aggregation_interval,
        num_reserved_threads=options.concurrency_adjustment,
        max_threads=options.max_valid_concurrency,
    )
    dataset = Dataset(tuple(converter.convert(parse_snapshots(lines))))
    if converter.total_skipped:
        print(f"⚠ Skipped {converter.total_skipped} thread readings above {options.max_valid_concurrency}", file=sys.stderr)
    if converter.restarts:
        print(f"⚠ Server restarted {converter.restarts} time(s) during the capture", file=sys.stderr)
    return dataset


def convert_packet_trace(lines, options: UslOptions) -> Dataset:
    parser = TraceParser()
    tabulator = PacketTabulator(options.watch_port)
    aggregator = WindowAggregator(options.aggregation_interval)

    records = tabulator.tabulate(parser.parse(lines))
    if options.keep_intermediate_files:
        tabulated_file = f"{options.output_prefix}trace.txt"
        records = write_tabulated(records, tabulated_file)
        print(f"Tabulated trace saved to: {tabulated_file}")

    dataset = Dataset(tuple(aggregator.aggregate(records)))
    if parser.unparsed:
        print(f"⚠ Ignored {parser.unparsed} unrecognized trace lines", file=sys.stderr)
    if tabulator.ignored:
        print(f"⚠ Ignored {tabulator.ignored} unmatched packets on port {options.watch_port}", file=sys.stderr)
    if aggregator.skipped:
        print(f"⚠ Skipped {aggregator.skipped} windows with no busy time", file=sys.stderr)
    return dataset


def load_input(path: str, options: UslOptions) -> Dataset:
    with open_input(path) as f:
        if options.conversion_mode == "counter_snapshots":
            dataset = convert_counter_snapshots(f, options)
        elif options.conversion_mode == "packet_trace":
            dataset = convert_packet_trace(f, options)
        else:
            dataset = parse_dataset(f, source=path)

    if not dataset.samples:
        raise InsufficientDataError(f"no samples could be taken from {path}")
    return dataset


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Universal Scalability Law capacity modelling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 usl.py data.txt                                 # Fit a ready N/C dataset
  python3 usl.py -m counter_snapshots -i 10 status.txt    # mysqladmin ext -i1 output
  python3 usl.py -m packet_trace -P 3306 trace.txt        # tcpdump -tttt -nn -q output
  python3 usl.py --only model-vs-actual -f vector-pdf data.txt
        """,
    )

    parser.add_argument("input", help="Input file ('-' for stdin)")
    parser.add_argument("--config", "-c", help="YAML file with option values")
    parser.add_argument(
        "--mode", "-m", dest="conversion_mode", help=f"Input conversion ({', '.join(CONVERSION_MODES)}; default: none)"
    )
    parser.add_argument("--axis-label", "-a", help=f"X axis label ({', '.join(AXIS_LABELS)})")
    parser.add_argument(
        "--interval", "-i", dest="aggregation_interval", type=float, help="Aggregation interval in seconds (default: 1)"
    )
    parser.add_argument(
        "--keep-intermediate", "-k", dest="keep_intermediate_files", action="store_true", default=None,
        help="Keep the tabulated packet trace",
    )
    parser.add_argument("--keep-dataset", "-d", dest="keep_dataset_path", help="Save the (N, C) dataset to this file")
    parser.add_argument(
        "--error-band", "-e", dest="draw_error_band", action="store_true", default=None,
        help="Draw the model's standard error band",
    )
    parser.add_argument("--x-limit", "-x", dest="x_axis_limit", type=float, help="X axis limit for the model chart")
    parser.add_argument("--point-color", help="Matplotlib color for measured points (default: red)")
    parser.add_argument("--point-type", help="Matplotlib marker for measured points (default: o)")
    parser.add_argument(
        "--max-concurrency", "-M", dest="max_valid_concurrency", type=int,
        help="Drop concurrency readings above this value (default: 0, unlimited)",
    )
    parser.add_argument(
        "--concurrency-adjustment", "-r", dest="concurrency_adjustment", type=int,
        help="Reserved threads subtracted from each reading (default: 0)",
    )
    parser.add_argument(
        "--only", "-o", dest="only_outputs",
        help=f"Comma separated charts to produce ({', '.join(CHART_NAMES)})",
    )
    parser.add_argument("--prefix", "-p", dest="output_prefix", help="Prefix for output file names")
    parser.add_argument("--port", "-P", dest="watch_port", type=int, help="Service port in packet traces (default: 3306)")
    parser.add_argument("--color", dest="color_output", action="store_true", default=None, help="Colorize the report")
    parser.add_argument(
        "--skip-refit", "-s", dest="skip_refit", action="store_true", default=None,
        help="Take σ and κ from the quadratic seed without the USL regression",
    )
    parser.add_argument(
        "--format", "-f", dest="image_format", help=f"Image format ({', '.join(IMAGE_FORMATS)}; default: raster)"
    )
    parser.add_argument("--c1-scale", dest="c1_scale_factor", type=float, help="Multiply the estimated C(1) by this factor")
    parser.add_argument(
        "--fit-c1", dest="fit_c1_as_parameter", action="store_true", default=None,
        help="Treat C(1) as a free parameter of the USL regression",
    )
    parser.add_argument("--no-plots", action="store_true", help="Print the report only, render no charts")
    return parser


def options_from_args(args: argparse.Namespace) -> UslOptions:
    file_values = load_options_file(args.config) if args.config else {}
    overrides = {
        name: value
        for name, value in vars(args).items()
        if name not in ("input", "config", "no_plots")
    }
    return build_options(file_values, **overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    args = create_parser().parse_args(argv)

    try:
        options = options_from_args(args)

        dataset = load_input(args.input, options)
        print(f"Loaded {len(dataset)} samples from {args.input}")

        if options.keep_dataset_path:
            save_dataset(dataset, options.keep_dataset_path)
            print(f"Dataset saved to: {options.keep_dataset_path}")

        report = build_model_report(dataset, options)
        print("\n" + "=" * 60)
        print("UNIVERSAL SCALABILITY LAW MODEL")
        print("=" * 60)
        print("\n".join(report.to_lines(color=options.color_output)))

        if not args.no_plots:
            from plot_usl import render_charts

            for output_file in render_charts(report, options):
                print(f"📊 Chart saved to: {output_file}")

        return 0

    except UslError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(1)
