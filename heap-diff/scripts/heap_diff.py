"""
Heap snapshot comparison for memory leak detection.

Provides tools to:
- Aggregate object counts and sizes per constructor
- Compare two snapshots to find types that grew
- Find retaining paths (why new objects are kept alive)
- Generate pandas DataFrames for analysis
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from heap_snapshot import HeapNode, ParsedSnapshot

TOP_GROWING_TYPES = 10
MAX_BFS_ITERATIONS = 10_000
MAX_PATH_SEGMENTS = 20
DEFAULT_MAX_RETAINED = 100

PATH_TRUNCATED = "..."

# Reverse edge map: node_idx -> [(from_node_idx, edge_label)]
ReverseEdgeMap = Dict[int, List[Tuple[int, str]]]


@dataclass
class DiffLimits:
    """Policy caps that bound the cost of a diff run."""

    top_types: int = TOP_GROWING_TYPES
    max_bfs_iterations: int = MAX_BFS_ITERATIONS
    max_path_segments: int = MAX_PATH_SEGMENTS


@dataclass
class TypeStats:
    """Population and aggregate self size of one constructor."""

    count: int = 0
    total_size: int = 0


@dataclass
class TypeGrowth:
    """Growth of one constructor between baseline and target."""

    constructor: str
    count_before: int
    count_after: int
    count_delta: int
    size_before: int
    size_after: int
    size_delta: int


@dataclass
class RetainedObject:
    """A new object in the target snapshot with its retention path."""

    constructor: str
    size: int
    retention_path: List[str]
    node_id: Optional[int] = None


def type_key(node: HeapNode) -> str:
    """
    Get the grouping key for a node.

    Objects and closures are grouped by constructor name; everything else
    (strings, arrays, code, ...) is grouped by its category.
    """
    if node.node_type in ("object", "closure"):
        return node.name or node.node_type
    return node.node_type


def compute_type_stats(snapshot: ParsedSnapshot) -> Dict[str, TypeStats]:
    """Count nodes and sum self sizes per type key."""
    stats: Dict[str, TypeStats] = {}
    for node in snapshot.nodes:
        key = type_key(node)
        entry = stats.get(key)
        if entry is None:
            entry = stats[key] = TypeStats()
        entry.count += 1
        entry.total_size += node.self_size
    return stats


def compute_growth(
    before: Dict[str, TypeStats], after: Dict[str, TypeStats]
) -> List[TypeGrowth]:
    """
    Compare two type statistics tables.

    Args:
        before: Stats of the baseline snapshot
        after: Stats of the target snapshot

    Returns:
        Rows for types whose count or total size increased, sorted by
        size_delta descending
    """
    all_keys = set(before) | set(after)

    growth = []
    for key in sorted(all_keys):
        before_stats = before.get(key, TypeStats())
        after_stats = after.get(key, TypeStats())

        count_delta = after_stats.count - before_stats.count
        size_delta = after_stats.total_size - before_stats.total_size

        # Only include if there's actual growth
        if count_delta > 0 or size_delta > 0:
            growth.append(
                TypeGrowth(
                    constructor=key,
                    count_before=before_stats.count,
                    count_after=after_stats.count,
                    count_delta=count_delta,
                    size_before=before_stats.total_size,
                    size_after=after_stats.total_size,
                    size_delta=size_delta,
                )
            )

    growth.sort(key=lambda row: row.size_delta, reverse=True)
    return growth


def build_reverse_edge_map(snapshot: ParsedSnapshot) -> ReverseEdgeMap:
    """Build index of what references each node (for retaining paths)."""
    reverse_edges: ReverseEdgeMap = {}
    node_count = len(snapshot.nodes)

    for from_idx in range(node_count):
        for edge in snapshot.edges_for_node(from_idx):
            if edge.to_node_idx >= node_count:
                continue
            reverse_edges.setdefault(edge.to_node_idx, []).append(
                (from_idx, edge.name_or_index)
            )

    return reverse_edges


def is_gc_root(node: HeapNode) -> bool:
    """Check whether a node is treated as a garbage collection root."""
    if node.node_type == "synthetic" and "root" in node.name:
        return True
    return node.name in ("Window", "global")


def find_retention_path(
    snapshot: ParsedSnapshot,
    target_idx: int,
    reverse_edges: ReverseEdgeMap,
    limits: Optional[DiffLimits] = None,
) -> List[str]:
    """
    Find retaining path from a GC root to a node (why it's alive).

    Walks backwards from the node through its referrers, breadth first, so
    the path found is the one with the fewest edges.

    Returns:
        Path segments like ["Window", "app", "cache", "[42]"], or an empty
        list when no root is reached within the iteration cap
    """
    limits = limits or DiffLimits()

    # node_idx -> (next node towards the target, label of the edge to it)
    visited: Dict[int, Tuple[Optional[int], str]] = {target_idx: (None, "")}
    queue = deque([target_idx])

    root_idx = None
    iterations = 0

    while queue:
        iterations += 1
        if iterations > limits.max_bfs_iterations:
            break

        current = queue.popleft()
        if is_gc_root(snapshot.nodes[current]):
            root_idx = current
            break

        for pred_idx, edge_label in reverse_edges.get(current, ()):
            if pred_idx not in visited:
                visited[pred_idx] = (current, edge_label)
                queue.append(pred_idx)

    if root_idx is None:
        return []

    # Walk forward from the root back down to the target
    path = [snapshot.nodes[root_idx].name]
    current = root_idx
    while current != target_idx:
        if len(path) >= limits.max_path_segments:
            path.append(PATH_TRUNCATED)
            break
        next_idx, edge_label = visited[current]
        path.append(edge_label or snapshot.nodes[next_idx].name)
        current = next_idx

    return path


def find_retained_objects(
    baseline: ParsedSnapshot,
    target: ParsedSnapshot,
    candidate_types: Iterable[str],
    max_retained: int,
    reverse_edges: Optional[ReverseEdgeMap] = None,
    limits: Optional[DiffLimits] = None,
) -> List[RetainedObject]:
    """
    Sample new objects of the candidate types and find their retention paths.

    Target nodes are scanned in index order; objects whose id already exists
    in the baseline are skipped, and objects without a path to a root are
    left out of the result.
    """
    candidates = set(candidate_types)
    if reverse_edges is None:
        reverse_edges = build_reverse_edge_map(target)

    retained = []
    for node_idx, node in enumerate(target.nodes):
        if len(retained) >= max_retained:
            break

        # Check if this object is new (not in baseline)
        if node.id in baseline.id_to_idx:
            continue

        constructor = type_key(node)
        if constructor not in candidates:
            continue

        path = find_retention_path(target, node_idx, reverse_edges, limits)
        if path:
            retained.append(
                RetainedObject(
                    constructor=constructor,
                    size=node.self_size,
                    retention_path=path,
                    node_id=node.id,
                )
            )

    return retained


@dataclass
class HeapDiff:
    """
    Differential leak report between a baseline and a target snapshot.

    Usage:
        diff = HeapDiff.compute(before, after, "before.heapsnapshot",
                                "after.heapsnapshot", max_retained_objects=50)
        diff.growth_dataframe().head(10)
    """

    baseline: str
    target: str
    type_growth: List[TypeGrowth] = field(default_factory=list)
    retained_objects: List[RetainedObject] = field(default_factory=list)
    limits: DiffLimits = field(default_factory=DiffLimits)

    @classmethod
    def compute(
        cls,
        baseline: ParsedSnapshot,
        target: ParsedSnapshot,
        baseline_label: str = "baseline",
        target_label: str = "target",
        max_retained_objects: int = DEFAULT_MAX_RETAINED,
        limits: Optional[DiffLimits] = None,
        progress: Optional[Callable[[str], None]] = None,
    ) -> "HeapDiff":
        """
        Compare two snapshots.

        Args:
            baseline: Earlier snapshot
            target: Later snapshot
            baseline_label: Name of the baseline in the report header
            target_label: Name of the target in the report header
            max_retained_objects: Cap on sampled retained objects
            limits: Search and selection caps
            progress: Optional callable receiving status messages

        Returns:
            HeapDiff with growth rows and retained objects
        """
        limits = limits or DiffLimits()
        report = progress or (lambda message: None)

        type_growth = compute_growth(
            compute_type_stats(baseline), compute_type_stats(target)
        )
        diff = cls(
            baseline=baseline_label,
            target=target_label,
            type_growth=type_growth,
            limits=limits,
        )

        report(f"Building reverse edge map ({target.edge_count} edges)...")
        reverse_edges = build_reverse_edge_map(target)

        report("Analyzing retained objects...")
        diff.retained_objects = find_retained_objects(
            baseline,
            target,
            diff.top_growing_types(),
            max_retained_objects,
            reverse_edges=reverse_edges,
            limits=limits,
        )
        return diff

    def top_growing_types(self) -> List[str]:
        """Constructors eligible for retention analysis."""
        return [row.constructor for row in self.type_growth[: self.limits.top_types]]

    def growth_dataframe(self) -> pd.DataFrame:
        """
        Growth rows as a DataFrame.

        Returns:
            DataFrame with columns: constructor, count_before, count_after,
            count_delta, size_before, size_after, size_delta
        """
        columns = [
            "constructor",
            "count_before",
            "count_after",
            "count_delta",
            "size_before",
            "size_after",
            "size_delta",
        ]
        data = [[getattr(row, column) for column in columns] for row in self.type_growth]
        return pd.DataFrame(data, columns=columns)

    def retained_dataframe(self) -> pd.DataFrame:
        """Retained objects as a DataFrame, with the path joined by ' -> '."""
        data = []
        for obj in self.retained_objects:
            data.append(
                {
                    "constructor": obj.constructor,
                    "node_id": obj.node_id,
                    "size": obj.size,
                    "path_length": len(obj.retention_path),
                    "retention_path": " -> ".join(obj.retention_path),
                }
            )
        return pd.DataFrame(
            data,
            columns=["constructor", "node_id", "size", "path_length", "retention_path"],
        )
