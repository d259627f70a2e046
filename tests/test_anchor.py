# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for session and artifact persistence."""

import time

import pytest

from acl_context.anchor import (
    Anchor,
    ArtifactType,
    ContextArtifact,
    Decision,
    SessionState,
)
from acl_context.storage import ContextDatabase


@pytest.fixture
def db():
    database = ContextDatabase()
    yield database
    database.close()


@pytest.fixture
def anchor(db: ContextDatabase) -> Anchor:
    return Anchor(db, "/ws")


class TestSessionState:
    def test_round_trip(self) -> None:
        state = SessionState(
            active_files=["src/a.ts"],
            recent_files=["src/b.ts"],
            context_summary="Refactoring the loader",
            decisions=[Decision("Use index files", ["src/lib/index.ts"], "2025-01-01T00:00:00")],
            metadata={"branch": "main"},
        )
        assert SessionState.from_dict(state.to_dict()) == state

    def test_from_partial_dict(self) -> None:
        state = SessionState.from_dict({"decisions": [{"description": "x"}]})
        assert state.active_files == []
        assert state.context_summary is None
        assert state.decisions[0].description == "x"
        assert state.decisions[0].timestamp


class TestSessions:
    def test_save_and_restore(self, anchor: Anchor) -> None:
        state = SessionState(active_files=["src/a.ts"], context_summary="wip")
        anchor.save_session("s1", state, name="morning")

        assert anchor.restore_session("s1") == state
        assert anchor.restore_session("unknown") is None

    def test_empty_id_rejected(self, anchor: Anchor) -> None:
        with pytest.raises(ValueError):
            anchor.save_session("", SessionState())

    def test_latest_session(self, anchor: Anchor) -> None:
        assert anchor.get_latest_session() is None

        anchor.save_session("s1", SessionState(context_summary="first"), name="one")
        time.sleep(0.002)
        anchor.save_session("s2", SessionState(context_summary="second"))

        latest = anchor.get_latest_session()
        assert latest is not None
        assert latest.session_id == "s2"
        assert latest.state.context_summary == "second"
        assert latest.to_dict()["state"]["context_summary"] == "second"

    def test_list_sessions(self, anchor: Anchor) -> None:
        anchor.save_session("s1", SessionState(), name="one")
        time.sleep(0.002)
        anchor.save_session("s2", SessionState())
        time.sleep(0.002)
        anchor.save_session("s1", SessionState(active_files=["x"]))

        sessions = anchor.list_sessions()
        assert [s["session_id"] for s in sessions] == ["s1", "s2"]
        assert sessions[0]["name"] == "one"

    def test_sessions_scoped_to_workspace(self, db: ContextDatabase, anchor: Anchor) -> None:
        Anchor(db, "/other").save_session("foreign", SessionState())
        assert anchor.list_sessions() == []
        assert anchor.get_latest_session() is None

    def test_unreadable_state(self, db: ContextDatabase, anchor: Anchor) -> None:
        db.upsert_session("broken", "/ws", "not json")
        assert anchor.restore_session("broken") is None

    def test_delete(self, anchor: Anchor) -> None:
        anchor.save_session("s1", SessionState())
        assert anchor.delete_session("s1") is True
        assert anchor.delete_session("s1") is False


class TestArtifacts:
    def test_save_and_get(self, anchor: Anchor) -> None:
        anchor.save_artifact("a1", ArtifactType.NOTE, "src/a.ts", "fragile", {"author": "me"})

        artifact = anchor.get_artifact("a1")

        assert isinstance(artifact, ContextArtifact)
        assert artifact.content == "fragile"
        assert artifact.metadata == {"author": "me"}
        as_dict = artifact.to_dict()
        assert as_dict["id"] == "a1"
        assert as_dict["type"] == "note"

    def test_unknown_type_rejected(self, anchor: Anchor) -> None:
        with pytest.raises(ValueError, match="Unknown artifact type"):
            anchor.save_artifact("a1", "todo", "src", "x")

    def test_empty_id_rejected(self, anchor: Anchor) -> None:
        with pytest.raises(ValueError):
            anchor.save_artifact("", ArtifactType.NOTE, "src", "x")

    def test_scope_query(self, anchor: Anchor) -> None:
        anchor.save_artifact("dir", ArtifactType.ARCHITECTURE, "src/api", "layering")
        anchor.save_artifact("file", ArtifactType.DECISION, "src/api/routes.ts", "rest")
        anchor.save_artifact("other", ArtifactType.SUMMARY, "src/apis", "unrelated")

        ids = sorted(a.artifact_id for a in anchor.get_artifacts_for_scope("src/api"))

        assert ids == ["dir", "file"]

    def test_missing_and_delete(self, anchor: Anchor) -> None:
        assert anchor.get_artifact("nope") is None
        anchor.save_artifact("a1", ArtifactType.NOTE, "src", "x")
        assert anchor.delete_artifact("a1") is True
        assert anchor.get_artifact("a1") is None
