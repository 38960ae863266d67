"""
Heap diff report records.

A report is newline-delimited JSON: one header record, then one record per
growing type, then one record per retained object.
"""

import json
from typing import IO, Any, Dict, Iterator, List

from heap_diff import HeapDiff, RetainedObject, TypeGrowth

FORMAT_NAME = "heap-diff"
FORMAT_VERSION = "0.1"


def header_record(diff: HeapDiff) -> Dict[str, Any]:
    return {
        "type": "header",
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "baseline": diff.baseline,
        "target": diff.target,
    }


def growth_record(row: TypeGrowth) -> Dict[str, Any]:
    return {
        "type": "growth",
        "constructor": row.constructor,
        "count_before": row.count_before,
        "count_after": row.count_after,
        "count_delta": row.count_delta,
        "size_before": row.size_before,
        "size_after": row.size_after,
        "size_delta": row.size_delta,
    }


def retained_record(obj: RetainedObject) -> Dict[str, Any]:
    return {
        "type": "retained",
        "constructor": obj.constructor,
        "size": obj.size,
        "retention_path": list(obj.retention_path),
    }


def iter_records(diff: HeapDiff) -> Iterator[Dict[str, Any]]:
    """Yield the report records in output order."""
    yield header_record(diff)
    for row in diff.type_growth:
        yield growth_record(row)
    for obj in diff.retained_objects:
        yield retained_record(obj)


def write_ndjson(diff: HeapDiff, fp: IO[str]) -> int:
    """
    Write a diff as NDJSON.

    Args:
        diff: Computed heap diff
        fp: Text stream to write to

    Returns:
        Number of records written
    """
    count = 0
    for record in iter_records(diff):
        fp.write(json.dumps(record, separators=(",", ":")))
        fp.write("\n")
        count += 1
    return count


def read_ndjson(fp: IO[str]) -> List[Dict[str, Any]]:
    """Read report records back, skipping blank lines."""
    return [json.loads(line) for line in fp if line.strip()]


def summarize(diff: HeapDiff, limit: int = 10) -> str:
    """
    Build a short plain-text summary of a diff.

    Args:
        diff: Computed heap diff
        limit: Number of growth rows and retained objects to list

    Returns:
        Multi-line summary text
    """
    lines = [
        f"Heap diff: {diff.baseline} -> {diff.target}",
        f"{len(diff.type_growth)} growing types, "
        f"{len(diff.retained_objects)} retained objects",
    ]

    if diff.type_growth:
        lines.append("")
        lines.append("Top growth:")
        for row in diff.type_growth[:limit]:
            lines.append(
                f"  {row.size_delta:+12,d} B  {row.count_delta:+8,d}  {row.constructor}"
            )

    if diff.retained_objects:
        lines.append("")
        lines.append("Retained objects:")
        for obj in diff.retained_objects[:limit]:
            lines.append(
                f"  {obj.constructor} ({obj.size} B): "
                + " -> ".join(obj.retention_path)
            )

    return "\n".join(lines)
