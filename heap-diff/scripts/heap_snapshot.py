"""
Heap snapshot decoding.

Turns a V8/Chrome ``.heapsnapshot`` document into a typed node/edge graph:
- Field positions are resolved from the snapshot's own meta layout
- Type codes and names are resolved against the enumerations and string table
- Edges keep plain node-table indices (no node ever references another node)
- An id -> index lookup is built once, while decoding
"""

import json
from dataclasses import dataclass
from typing import IO, Any, Dict, List, Optional

import pandas as pd

NODE_FIELDS = ("type", "name", "id", "self_size", "edge_count")
EDGE_FIELDS = ("type", "name_or_index", "to_node")

# Edge types whose name_or_index is a numeric slot, not a string-table index
INDEXED_EDGE_TYPES = ("element", "hidden")


class SnapshotDecodeError(ValueError):
    """Raised when a document does not have the shape of a heap snapshot."""

    def __init__(self, reason: str, source: Optional[str] = None):
        self.reason = reason
        self.source = source
        if source:
            message = f"cannot decode {source} snapshot: {reason}"
        else:
            message = f"cannot decode snapshot: {reason}"
        super().__init__(message)


@dataclass
class HeapNode:
    """Represents a node in the heap snapshot."""

    node_type: str
    name: str
    id: int
    self_size: int
    edge_count: int
    edges_start: int


@dataclass
class HeapEdge:
    """Represents an edge (reference) between heap nodes."""

    edge_type: str
    name_or_index: str
    to_node_idx: int


def is_heap_snapshot(data: Any) -> bool:
    """Check whether a parsed JSON document looks like a heap snapshot."""
    return isinstance(data, dict) and "snapshot" in data and "nodes" in data


def _require(mapping: Dict[str, Any], key: str, where: str, source: Optional[str]):
    if not isinstance(mapping, dict) or key not in mapping:
        raise SnapshotDecodeError(f"missing '{key}' in {where}", source)
    return mapping[key]


def _type_names(enumeration: Any) -> List[str]:
    # The first element of node_types/edge_types is the list of type names;
    # the remaining elements describe the other fields.
    if isinstance(enumeration, list) and enumeration:
        first = enumeration[0]
        if isinstance(first, list):
            return [name for name in first if isinstance(name, str)]
    return []


def _field_positions(
    fields: Any, required: tuple, what: str, source: Optional[str]
) -> Dict[str, int]:
    if not isinstance(fields, list) or not fields:
        raise SnapshotDecodeError(f"{what} layout is empty", source)
    positions = {}
    for field in required:
        if field not in fields:
            raise SnapshotDecodeError(f"{what} layout has no '{field}' field", source)
        positions[field] = fields.index(field)
    return positions


class ParsedSnapshot:
    """
    Decoded heap snapshot.

    V8 heap snapshots use a compact format with flat integer arrays whose
    layout is described in ``snapshot.meta``. This class decodes those arrays
    once into ``HeapNode``/``HeapEdge`` tables and is not modified afterwards.
    """

    def __init__(
        self,
        nodes: List[HeapNode],
        edges: List[HeapEdge],
        id_to_idx: Dict[int, int],
        node_type_names: Optional[List[str]] = None,
        edge_type_names: Optional[List[str]] = None,
        dropped_nodes: int = 0,
        dropped_edges: int = 0,
        source: Optional[str] = None,
    ):
        self.nodes = nodes
        self.edges = edges
        self.id_to_idx = id_to_idx
        self.node_type_names = node_type_names or []
        self.edge_type_names = edge_type_names or []
        self.dropped_nodes = dropped_nodes
        self.dropped_edges = dropped_edges
        self.source = source

    @classmethod
    def parse(cls, fp: IO, source: Optional[str] = None) -> "ParsedSnapshot":
        """
        Decode a snapshot from an open file object.

        Args:
            fp: Text or binary file object holding the JSON document
            source: Label used in error messages (e.g. "baseline")

        Returns:
            Decoded ParsedSnapshot
        """
        try:
            data = json.load(fp)
        except (ValueError, UnicodeDecodeError) as e:
            raise SnapshotDecodeError(f"invalid JSON: {e}", source) from e
        return cls.from_dict(data, source=source)

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], source: Optional[str] = None
    ) -> "ParsedSnapshot":
        """
        Decode an already-parsed heap snapshot document.

        Raises:
            SnapshotDecodeError: if the top-level structure is not a snapshot
        """
        if not is_heap_snapshot(data):
            raise SnapshotDecodeError("not a heap snapshot document", source)

        meta = _require(data["snapshot"], "meta", "snapshot", source)
        node_fields = _require(meta, "node_fields", "snapshot.meta", source)
        edge_fields = _require(meta, "edge_fields", "snapshot.meta", source)
        node_type_names = _type_names(
            _require(meta, "node_types", "snapshot.meta", source)
        )
        edge_type_names = _type_names(
            _require(meta, "edge_types", "snapshot.meta", source)
        )

        raw_nodes = data["nodes"]
        raw_edges = _require(data, "edges", "document", source)
        strings = _require(data, "strings", "document", source)
        arrays = {"nodes": raw_nodes, "edges": raw_edges, "strings": strings}
        for key, value in arrays.items():
            if not isinstance(value, list):
                raise SnapshotDecodeError(f"'{key}' is not an array", source)

        node_pos = _field_positions(node_fields, NODE_FIELDS, "node", source)
        edge_pos = _field_positions(edge_fields, EDGE_FIELDS, "edge", source)

        # Edges first, so node edge ranges can be kept inside the edge table
        try:
            edges, dropped_edges = _decode_edges(
                raw_edges,
                edge_pos,
                len(edge_fields),
                len(node_fields),
                edge_type_names,
                strings,
            )
            nodes, id_to_idx, dropped_nodes = _decode_nodes(
                raw_nodes,
                node_pos,
                len(node_fields),
                node_type_names,
                strings,
                len(edges),
            )
        except (TypeError, ValueError) as e:
            raise SnapshotDecodeError(
                f"non-integer value in graph arrays: {e}", source
            ) from e

        return cls(
            nodes,
            edges,
            id_to_idx,
            node_type_names=node_type_names,
            edge_type_names=edge_type_names,
            dropped_nodes=dropped_nodes,
            dropped_edges=dropped_edges,
            source=source,
        )

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def edges_for_node(self, node_idx: int) -> List[HeapEdge]:
        """Get the forward edges owned by a node."""
        node = self.nodes[node_idx]
        end = min(node.edges_start + node.edge_count, len(self.edges))
        return self.edges[node.edges_start : end]

    def get_nodes_by_type(self, node_type: str) -> List[HeapNode]:
        """Get all nodes of a specific type."""
        return [node for node in self.nodes if node.node_type == node_type]

    def get_nodes_by_name(self, name: str) -> List[HeapNode]:
        """Get all nodes with a specific name."""
        return [node for node in self.nodes if node.name == name]

    def get_node_size_summary(self) -> pd.DataFrame:
        """
        Get summary of heap usage by node type.

        Returns:
            DataFrame with columns: node_type, count, total_size, avg_size
        """
        df = pd.DataFrame(
            {
                "node_type": [node.node_type for node in self.nodes],
                "self_size": [node.self_size for node in self.nodes],
            }
        )
        if df.empty:
            return pd.DataFrame(columns=["node_type", "count", "total_size", "avg_size"])

        summary = (
            df.groupby("node_type")["self_size"]
            .agg(count="count", total_size="sum", avg_size="mean")
            .reset_index()
        )
        return summary.sort_values("total_size", ascending=False)


def _decode_nodes(
    raw_nodes: List[int],
    pos: Dict[str, int],
    field_count: int,
    type_names: List[str],
    strings: List[str],
    total_edges: int,
):
    type_idx = pos["type"]
    name_idx = pos["name"]
    id_idx = pos["id"]
    size_idx = pos["self_size"]
    edge_count_idx = pos["edge_count"]

    nodes = []
    id_to_idx = {}
    dropped = 0
    edge_offset = 0

    for i in range(0, len(raw_nodes), field_count):
        chunk = raw_nodes[i : i + field_count]
        if len(chunk) < field_count:
            dropped += 1
            continue

        type_code = int(chunk[type_idx])
        if 0 <= type_code < len(type_names):
            node_type = type_names[type_code]
        else:
            node_type = f"type_{type_code}"

        name_id = int(chunk[name_idx])
        name = strings[name_id] if 0 <= name_id < len(strings) else ""

        # Edge ranges must stay inside the edge table
        edge_count = max(0, min(int(chunk[edge_count_idx]), total_edges - edge_offset))

        node = HeapNode(
            node_type=node_type,
            name=name,
            id=int(chunk[id_idx]),
            self_size=int(chunk[size_idx]),
            edge_count=edge_count,
            edges_start=edge_offset,
        )
        id_to_idx[node.id] = len(nodes)
        nodes.append(node)
        edge_offset += edge_count

    return nodes, id_to_idx, dropped


def _decode_edges(
    raw_edges: List[int],
    pos: Dict[str, int],
    field_count: int,
    node_field_count: int,
    type_names: List[str],
    strings: List[str],
):
    type_idx = pos["type"]
    name_idx = pos["name_or_index"]
    to_idx = pos["to_node"]

    edges = []
    dropped = 0

    for i in range(0, len(raw_edges), field_count):
        chunk = raw_edges[i : i + field_count]
        if len(chunk) < field_count:
            dropped += 1
            continue

        type_code = int(chunk[type_idx])
        if 0 <= type_code < len(type_names):
            edge_type = type_names[type_code]
        else:
            edge_type = f"edge_{type_code}"

        # Name or index depends on edge type
        raw_name = int(chunk[name_idx])
        if edge_type in INDEXED_EDGE_TYPES:
            name_or_index = f"[{raw_name}]"
        elif 0 <= raw_name < len(strings):
            name_or_index = strings[raw_name]
        else:
            name_or_index = str(raw_name)

        # to_node is an offset into the flat nodes array, not a node index
        edges.append(
            HeapEdge(
                edge_type=edge_type,
                name_or_index=name_or_index,
                to_node_idx=int(chunk[to_idx]) // node_field_count,
            )
        )

    return edges, dropped


def load_snapshot(file_path: str, source: Optional[str] = None) -> ParsedSnapshot:
    """
    Load a heap snapshot from file.

    Args:
        file_path: Path to .heapsnapshot JSON file
        source: Label for error messages, defaults to the path

    Returns:
        Parsed ParsedSnapshot object
    """
    with open(file_path, "rb") as f:
        return ParsedSnapshot.parse(f, source=source or str(file_path))


def find_largest_objects(snapshot: ParsedSnapshot, limit: int = 20) -> pd.DataFrame:
    """
    Find the largest objects in a snapshot.

    Args:
        snapshot: Decoded heap snapshot
        limit: Number of objects to return

    Returns:
        DataFrame of largest objects
    """
    data = []
    for node in snapshot.nodes:
        if node.self_size > 0:
            data.append(
                {
                    "node_id": node.id,
                    "node_type": node.node_type,
                    "name": node.name,
                    "size_bytes": node.self_size,
                    "size_mb": node.self_size / (1024 * 1024),
                }
            )

    df = pd.DataFrame(data)
    if not df.empty:
        df = df.sort_values("size_bytes", ascending=False).head(limit)

    return df
