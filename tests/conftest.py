"""
Pytest configuration and shared fixtures.
"""

import json
import sys
from pathlib import Path

import pytest

# Add scripts to path (from heap-diff directory)
scripts_path = Path(__file__).parent.parent / "heap-diff" / "scripts"
sys.path.insert(0, str(scripts_path))

NODE_FIELDS = ["type", "name", "id", "self_size", "edge_count", "trace_node_id"]
NODE_TYPES = [
    "hidden",
    "array",
    "string",
    "object",
    "code",
    "closure",
    "regexp",
    "number",
    "native",
    "synthetic",
]
EDGE_FIELDS = ["type", "name_or_index", "to_node"]
EDGE_TYPES = ["context", "element", "property", "internal", "hidden", "shortcut", "weak"]


def build_heap_data(nodes):
    """
    Build a raw V8-layout snapshot document.

    Each node is (node_type, name, id, self_size, edges) and each edge is
    (edge_type, name_or_index, target_position) where target_position is
    the index of the target in ``nodes``.
    """
    strings = []

    def intern(value):
        if value not in strings:
            strings.append(value)
        return strings.index(value)

    flat_nodes = []
    flat_edges = []
    for node_type, name, node_id, self_size, edges in nodes:
        flat_nodes += [NODE_TYPES.index(node_type), intern(name), node_id, self_size, len(edges), 0]
        for edge_type, label, target in edges:
            if edge_type in ("element", "hidden"):
                name_or_index = label
            else:
                name_or_index = intern(label)
            flat_edges += [EDGE_TYPES.index(edge_type), name_or_index, target * len(NODE_FIELDS)]

    return {
        "snapshot": {
            "meta": {
                "node_fields": list(NODE_FIELDS),
                "node_types": [list(NODE_TYPES), "string", "number"],
                "edge_fields": list(EDGE_FIELDS),
                "edge_types": [list(EDGE_TYPES), "string_or_number", "node"],
            },
            "node_count": len(flat_nodes) // len(NODE_FIELDS),
            "edge_count": len(flat_edges) // len(EDGE_FIELDS),
        },
        "nodes": flat_nodes,
        "edges": flat_edges,
        "strings": strings,
    }


@pytest.fixture
def make_heap_data():
    """Factory for raw snapshot documents, see build_heap_data()."""
    return build_heap_data


@pytest.fixture
def write_snapshot(tmp_path):
    """Write a raw snapshot document to a .heapsnapshot file."""

    def _write(name, data):
        path = tmp_path / name
        path.write_text(json.dumps(data))
        return str(path)

    return _write


@pytest.fixture
def sample_heap_data():
    """Minimal valid heap snapshot data for testing."""
    return {
        "snapshot": {
            "meta": {
                "node_fields": list(NODE_FIELDS),
                "node_types": [list(NODE_TYPES), []],
                "edge_fields": list(EDGE_FIELDS),
                "edge_types": [list(EDGE_TYPES), []],
            }
        },
        "nodes": [
            # Node: type=9(synthetic), name=0, id=1, self_size=0, edge_count=1, trace_node_id=0
            9,
            0,
            1,
            0,
            1,
            0,
            # Node: type=3(object), name=1, id=2, self_size=100, edge_count=0, trace_node_id=0
            3,
            1,
            2,
            100,
            0,
            0,
        ],
        "edges": [
            # Edge: type=2(property), name_or_index=2, to_node=6
            2,
            2,
            6,
        ],
        "strings": ["(GC roots)", "Object", "myProperty"],
    }


@pytest.fixture
def leak_snapshots(make_heap_data):
    """
    Baseline/target pair where a cache on the global object grows.

    Target: global -> cache (Cache) -> [0], [1] (Item objects) plus an
    unreachable Item and a few new strings.
    """
    baseline = make_heap_data(
        [
            ("synthetic", "(GC roots)", 1, 0, [("element", 1, 1)]),
            ("object", "global", 3, 40, [("property", "cache", 2)]),
            ("object", "Cache", 5, 32, []),
            ("string", "hello", 7, 24, []),
        ]
    )
    target = make_heap_data(
        [
            ("synthetic", "(GC roots)", 1, 0, [("element", 1, 1)]),
            ("object", "global", 3, 40, [("property", "cache", 2)]),
            ("object", "Cache", 5, 32, [("element", 0, 3), ("element", 1, 4)]),
            ("object", "Item", 11, 64, [("property", "label", 6)]),
            ("object", "Item", 13, 64, [("property", "label", 7)]),
            ("object", "Item", 15, 64, []),
            ("string", "one", 17, 24, []),
            ("string", "two", 19, 24, []),
        ]
    )
    return baseline, target
