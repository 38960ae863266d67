#!/usr/bin/env python3
"""
Compare two heap snapshots to find memory leaks.

Outputs newline-delimited JSON showing:
- Object types that grew (count and size deltas)
- Retention paths for new objects (what's keeping them alive)

Usage:
    heapdiff baseline.heapsnapshot target.heapsnapshot -o diff.ndjson
"""

import argparse
import sys
from typing import List, Optional

from diff_report import summarize, write_ndjson
from heap_diff import DEFAULT_MAX_RETAINED, DiffLimits, HeapDiff
from heap_snapshot import ParsedSnapshot, SnapshotDecodeError, load_snapshot


def print_status(msg: str):
    """Print a progress line to stderr."""
    print(msg, file=sys.stderr)


def print_error(msg: str):
    """Print an error line to stderr."""
    print(f"Error: {msg}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    defaults = DiffLimits()
    parser = argparse.ArgumentParser(
        prog="heapdiff", description="Compare heap snapshots to find memory leaks"
    )
    parser.add_argument("baseline", help="baseline heap snapshot (before the leak)")
    parser.add_argument("target", help="target heap snapshot (after the leak)")
    parser.add_argument(
        "-o", "--output", help="output file (defaults to stdout)"
    )
    parser.add_argument(
        "-n",
        "--max-retained",
        type=int,
        default=DEFAULT_MAX_RETAINED,
        help=f"maximum number of retained objects to analyze (default {DEFAULT_MAX_RETAINED})",
    )
    parser.add_argument(
        "--top-types",
        type=int,
        default=defaults.top_types,
        help=f"growing types eligible for retention analysis (default {defaults.top_types})",
    )
    parser.add_argument(
        "--max-bfs-iterations",
        type=int,
        default=defaults.max_bfs_iterations,
        help=f"search cap per object (default {defaults.max_bfs_iterations})",
    )
    parser.add_argument(
        "--max-path-length",
        type=int,
        default=defaults.max_path_segments,
        help=f"retention path segments before truncation (default {defaults.max_path_segments})",
    )
    parser.add_argument("--chart", help="also save a memory growth chart (PNG)")
    parser.add_argument(
        "--summary",
        action="store_true",
        help="print a plain-text summary to stderr",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="suppress progress output"
    )
    return parser


def _load(path: str, label: str, status) -> ParsedSnapshot:
    status(f"Loading {label}: {path}")
    try:
        snapshot = load_snapshot(path, source=label)
    except OSError as e:
        raise SnapshotDecodeError(e.strerror or str(e), label) from e
    status(f"  {snapshot.node_count} nodes, {snapshot.edge_count} edges")
    if snapshot.dropped_nodes or snapshot.dropped_edges:
        status(
            f"  dropped {snapshot.dropped_nodes} partial nodes, "
            f"{snapshot.dropped_edges} partial edges"
        )
    return snapshot


def run(args: argparse.Namespace) -> HeapDiff:
    status = (lambda msg: None) if args.quiet else print_status

    baseline = _load(args.baseline, "baseline", status)
    target = _load(args.target, "target", status)

    status("Computing diff...")
    limits = DiffLimits(
        top_types=args.top_types,
        max_bfs_iterations=args.max_bfs_iterations,
        max_path_segments=args.max_path_length,
    )
    diff = HeapDiff.compute(
        baseline,
        target,
        args.baseline,
        args.target,
        max_retained_objects=args.max_retained,
        limits=limits,
        progress=lambda msg: status(f"  {msg}"),
    )
    status(
        f"Found {len(diff.type_growth)} growing types, "
        f"{len(diff.retained_objects)} retained objects"
    )

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            write_ndjson(diff, f)
        status(f"Wrote diff to {args.output}")
    else:
        write_ndjson(diff, sys.stdout)

    if args.chart:
        from visualize import memory_growth_chart

        memory_growth_chart(diff, args.chart)

    if args.summary:
        print_status(summarize(diff))

    return diff


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    for name in ("max_retained", "top_types", "max_bfs_iterations", "max_path_length"):
        if getattr(args, name) < 0:
            parser.error(f"--{name.replace('_', '-')} must not be negative")
    if args.max_path_length < 1:
        parser.error("--max-path-length must be at least 1")

    try:
        run(args)
    except SnapshotDecodeError as e:
        print_error(str(e))
        return 1
    except OSError as e:
        print_error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
