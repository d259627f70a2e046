# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Import graph queries over the durable store's edge table.

The graph holds no state of its own: every query reads the ``import_graph``
table, so it always reflects the last committed edge replacement.

Components:
- edge_score: pure weighting of an edge by kind and direction
- ImportGraph: forward/reverse lookups, bounded BFS, JSON export
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from acl_context.models import ImportEdge, ImportType
from acl_context.paths import relative_to_workspace
from acl_context.storage import ContextDatabase

logger = logging.getLogger(__name__)

# Type alias for graph export format
GraphExport = Dict[str, Any]

EDGE_WEIGHTS: Dict[str, float] = {
    ImportType.STATIC: 1.0,
    ImportType.DYNAMIC: 0.7,
    ImportType.TYPE_ONLY: 0.5,
}
UNKNOWN_EDGE_WEIGHT = 0.3

# Being imported-by counts for less than importing
REVERSE_EDGE_FACTOR = 0.8


def edge_score(import_type: str, reverse: bool = False) -> float:
    """Relevance weight of an import edge.

    Args:
        import_type: Edge kind (static, dynamic, type-only).
        reverse: True when scoring the importer side of the edge.

    Returns:
        static 1.0, dynamic 0.7, type-only 0.5, anything else 0.3;
        reverse edges are multiplied by 0.8.
    """
    score = EDGE_WEIGHTS.get(import_type, UNKNOWN_EDGE_WEIGHT)
    if reverse:
        score *= REVERSE_EDGE_FACTOR
    return score


class ImportGraph:
    """Directed file-to-file import graph backed by a ContextDatabase.

    Usage:
        graph = ImportGraph(database)
        graph.get_imports("/ws/a.ts")        # edges a.ts -> *
        graph.get_importers("/ws/b.ts")      # edges * -> b.ts
        graph.related_files("/ws/a.ts", 2)   # BFS over both directions
    """

    def __init__(self, database: ContextDatabase, workspace_path: Optional[str] = None):
        self._database = database
        self._workspace_path = workspace_path

    def get_imports(self, file_path: str) -> List[ImportEdge]:
        """Edges whose source is ``file_path``."""
        return self._database.get_imports(file_path)

    def get_importers(self, file_path: str) -> List[ImportEdge]:
        """Edges whose target is ``file_path``."""
        return self._database.get_importers(file_path)

    def related_files(self, file_path: str, depth: int = 1) -> List[str]:
        """Files reachable within ``depth`` hops, following imports and importers.

        Breadth-first with a visited set, so cycles stop expanding on their
        own. The origin is never part of the result; depth 0 yields nothing.

        Returns:
            Related paths in discovery order (nearest first).
        """
        if depth <= 0:
            return []

        visited: Set[str] = {file_path}
        result: List[str] = []
        queue: Deque[Tuple[str, int]] = deque([(file_path, 0)])

        while queue:
            current, current_depth = queue.popleft()
            if current_depth >= depth:
                continue

            neighbors = [edge.target_path for edge in self.get_imports(current)]
            neighbors.extend(edge.source_path for edge in self.get_importers(current))
            for neighbor in neighbors:
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                result.append(neighbor)
                queue.append((neighbor, current_depth + 1))

        return result

    def export_graph(self) -> GraphExport:
        """Export the graph to a JSON-compatible dict.

        Returns:
            Dictionary with ``metadata``, ``files``, ``edges`` and
            ``graph_metadata`` (the ten most imported files).
        """
        edges = self._database.get_all_edges()

        outgoing: Dict[str, int] = {}
        incoming: Dict[str, int] = {}
        for edge in edges:
            outgoing[edge.source_path] = outgoing.get(edge.source_path, 0) + 1
            incoming[edge.target_path] = incoming.get(edge.target_path, 0) + 1

        all_files = sorted(set(outgoing) | set(incoming))

        metadata: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "total_files": len(all_files),
            "total_edges": len(edges),
        }
        if self._workspace_path:
            metadata["workspace_path"] = self._workspace_path

        files = []
        for filepath in all_files:
            file_entry: Dict[str, Any] = {
                "path": filepath,
                "imports": outgoing.get(filepath, 0),
                "imported_by": incoming.get(filepath, 0),
            }
            if self._workspace_path:
                file_entry["relative_path"] = relative_to_workspace(
                    self._workspace_path, filepath
                )
            files.append(file_entry)

        most_connected = sorted(incoming.items(), key=lambda x: (-x[1], x[0]))[:10]

        return {
            "metadata": metadata,
            "files": files,
            "edges": [edge.to_dict() for edge in edges],
            "graph_metadata": {
                "most_connected_files": [
                    {"file": filepath, "importer_count": count}
                    for filepath, count in most_connected
                ],
            },
        }
