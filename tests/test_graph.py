# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for ImportGraph and edge scoring."""

import pytest

from acl_context.graph import ImportGraph, edge_score
from acl_context.models import ImportType
from acl_context.storage import ContextDatabase


@pytest.fixture
def db():
    database = ContextDatabase()
    yield database
    database.close()


@pytest.fixture
def graph(db: ContextDatabase) -> ImportGraph:
    return ImportGraph(db, "/ws")


class TestEdgeScore:
    @pytest.mark.parametrize(
        "import_type,expected",
        [
            (ImportType.STATIC, 1.0),
            (ImportType.DYNAMIC, 0.7),
            (ImportType.TYPE_ONLY, 0.5),
            ("require", 0.3),
        ],
    )
    def test_forward(self, import_type: str, expected: float) -> None:
        assert edge_score(import_type) == pytest.approx(expected)

    def test_reverse_is_discounted(self) -> None:
        assert edge_score(ImportType.STATIC, reverse=True) == pytest.approx(0.8)
        assert edge_score(ImportType.TYPE_ONLY, reverse=True) == pytest.approx(0.4)


class TestRelatedFiles:
    def test_symmetric_over_one_edge(self, db: ContextDatabase, graph: ImportGraph) -> None:
        """An edge a -> b makes each file related to the other."""
        db.add_import_edge("/ws/a.ts", "/ws/b.ts", ImportType.STATIC)
        assert graph.related_files("/ws/a.ts", 1) == ["/ws/b.ts"]
        assert graph.related_files("/ws/b.ts", 1) == ["/ws/a.ts"]

    def test_depth_zero_is_empty(self, db: ContextDatabase, graph: ImportGraph) -> None:
        db.add_import_edge("/ws/a.ts", "/ws/b.ts", ImportType.STATIC)
        assert graph.related_files("/ws/a.ts", 0) == []

    def test_depth_bounds_traversal(self, db: ContextDatabase, graph: ImportGraph) -> None:
        db.add_import_edge("/ws/a.ts", "/ws/b.ts", ImportType.STATIC)
        db.add_import_edge("/ws/b.ts", "/ws/c.ts", ImportType.STATIC)
        db.add_import_edge("/ws/c.ts", "/ws/d.ts", ImportType.STATIC)

        assert graph.related_files("/ws/a.ts", 1) == ["/ws/b.ts"]
        assert graph.related_files("/ws/a.ts", 2) == ["/ws/b.ts", "/ws/c.ts"]
        assert graph.related_files("/ws/a.ts", 5) == ["/ws/b.ts", "/ws/c.ts", "/ws/d.ts"]

    def test_cycles_terminate(self, db: ContextDatabase, graph: ImportGraph) -> None:
        db.add_import_edge("/ws/a.ts", "/ws/b.ts", ImportType.STATIC)
        db.add_import_edge("/ws/b.ts", "/ws/c.ts", ImportType.STATIC)
        db.add_import_edge("/ws/c.ts", "/ws/a.ts", ImportType.STATIC)

        related = graph.related_files("/ws/a.ts", 10)

        assert sorted(related) == ["/ws/b.ts", "/ws/c.ts"]
        assert "/ws/a.ts" not in related

    def test_importers_followed(self, db: ContextDatabase, graph: ImportGraph) -> None:
        db.add_import_edge("/ws/x.ts", "/ws/shared.ts", ImportType.STATIC)
        db.add_import_edge("/ws/y.ts", "/ws/shared.ts", ImportType.DYNAMIC)
        assert graph.related_files("/ws/x.ts", 2) == ["/ws/shared.ts", "/ws/y.ts"]

    def test_unknown_file(self, graph: ImportGraph) -> None:
        assert graph.related_files("/ws/nowhere.ts", 3) == []


class TestExportGraph:
    def test_export(self, db: ContextDatabase, graph: ImportGraph) -> None:
        db.add_import_edge("/ws/a.ts", "/ws/c.ts", ImportType.STATIC)
        db.add_import_edge("/ws/b.ts", "/ws/c.ts", ImportType.TYPE_ONLY)

        exported = graph.export_graph()

        assert exported["metadata"]["total_files"] == 3
        assert exported["metadata"]["total_edges"] == 2
        assert exported["metadata"]["workspace_path"] == "/ws"
        files = {f["path"]: f for f in exported["files"]}
        assert files["/ws/c.ts"]["imported_by"] == 2
        assert files["/ws/c.ts"]["relative_path"] == "c.ts"
        assert files["/ws/a.ts"]["imports"] == 1
        most = exported["graph_metadata"]["most_connected_files"]
        assert most[0] == {"file": "/ws/c.ts", "importer_count": 2}
        assert exported["edges"][1]["import_type"] == ImportType.TYPE_ONLY

    def test_empty_graph(self, db: ContextDatabase) -> None:
        exported = ImportGraph(db).export_graph()
        assert exported["files"] == []
        assert "workspace_path" not in exported["metadata"]
