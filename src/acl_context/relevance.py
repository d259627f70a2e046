# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Relevance scoring of files related through direct import edges."""

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List

from acl_context.graph import ImportGraph, edge_score
from acl_context.models import ImportType

RECENCY_BOOST = 1.2


@dataclass(frozen=True)
class RelevanceScore:
    """A related file with its score in [0, 1] and a short reason."""

    file_path: str
    score: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "score": round(self.score, 4),
            "reason": self.reason,
        }


class RelevanceEngine:
    """Scores the direct imports and importers of a file.

    Only one hop is considered; transitive neighbors come from
    ``ImportGraph.related_files``.
    """

    def __init__(self, graph: ImportGraph):
        self._graph = graph

    def get_relevant_files(
        self,
        file_path: str,
        max_results: int = 10,
        min_score: float = 0.1,
        include_type_only: bool = True,
    ) -> List[RelevanceScore]:
        """Score direct neighbors of ``file_path``.

        Args:
            file_path: Absolute path of the file in focus.
            max_results: Maximum number of scores returned.
            min_score: Scores below this threshold are dropped.
            include_type_only: Whether type-only edges count.

        Returns:
            Scores sorted highest first. A file reachable both ways keeps
            its best score.
        """
        best: Dict[str, RelevanceScore] = {}

        def consider(candidate: RelevanceScore) -> None:
            if candidate.score < min_score:
                return
            current = best.get(candidate.file_path)
            if current is None or candidate.score > current.score:
                best[candidate.file_path] = candidate

        for edge in self._graph.get_imports(file_path):
            if not include_type_only and edge.import_type == ImportType.TYPE_ONLY:
                continue
            consider(
                RelevanceScore(
                    file_path=edge.target_path,
                    score=edge_score(edge.import_type),
                    reason=f"imported ({edge.import_type})",
                )
            )

        for edge in self._graph.get_importers(file_path):
            if not include_type_only and edge.import_type == ImportType.TYPE_ONLY:
                continue
            consider(
                RelevanceScore(
                    file_path=edge.source_path,
                    score=edge_score(edge.import_type, reverse=True),
                    reason=f"importer ({edge.import_type})",
                )
            )

        ranked = sorted(best.values(), key=lambda s: (-s.score, s.file_path))
        return ranked[:max_results]

    def apply_recency_boost(
        self, scores: Iterable[RelevanceScore], recent_files: Iterable[str]
    ) -> List[RelevanceScore]:
        """Boost recently edited files by 1.2x, capped at 1.0."""
        recent = set(recent_files)
        boosted = []
        for score in scores:
            if score.file_path in recent:
                score = replace(
                    score,
                    score=min(1.0, score.score * RECENCY_BOOST),
                    reason=f"{score.reason}, recently edited",
                )
            boosted.append(score)
        return boosted
