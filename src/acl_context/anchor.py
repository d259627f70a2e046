# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Session state and context artifacts persisted alongside skeletons.

Sessions let an agent resume where it left off (active files, recent files,
decisions). Artifacts are notes attached to a file or directory scope; a
query for a scope also returns artifacts of every path below it.

Both are stored as JSON in the same ContextDatabase as the skeleton cache.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from acl_context.models import ArtifactRecord, SessionRecord
from acl_context.storage import ContextDatabase

logger = logging.getLogger(__name__)


class ArtifactType:
    """Kinds of context artifacts."""

    SUMMARY = "summary"
    ARCHITECTURE = "architecture"
    DECISION = "decision"
    NOTE = "note"

    ALL = (SUMMARY, ARCHITECTURE, DECISION, NOTE)


@dataclass
class Decision:
    """A decision recorded during a session."""

    description: str
    related_files: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "description": self.description,
            "related_files": list(self.related_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Decision":
        return cls(
            description=data["description"],
            related_files=list(data.get("related_files", [])),
            timestamp=data.get("timestamp") or datetime.now(timezone.utc).isoformat(),
        )


@dataclass
class SessionState:
    """Agent working state saved between sessions."""

    active_files: List[str] = field(default_factory=list)
    recent_files: List[str] = field(default_factory=list)
    context_summary: Optional[str] = None
    decisions: List[Decision] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_files": list(self.active_files),
            "recent_files": list(self.recent_files),
            "context_summary": self.context_summary,
            "decisions": [d.to_dict() for d in self.decisions],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionState":
        return cls(
            active_files=list(data.get("active_files", [])),
            recent_files=list(data.get("recent_files", [])),
            context_summary=data.get("context_summary"),
            decisions=[Decision.from_dict(d) for d in data.get("decisions", [])],
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class SavedSession:
    """A stored session with its identity."""

    session_id: str
    state: SessionState
    name: Optional[str]
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "name": self.name,
            "updated_at": self.updated_at,
            "state": self.state.to_dict(),
        }


@dataclass
class ContextArtifact:
    """A note scoped to a workspace-relative file or directory."""

    artifact_id: str
    artifact_type: str
    scope: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.artifact_id,
            "type": self.artifact_type,
            "scope": self.scope,
            "content": self.content,
            "metadata": self.metadata,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _load_state(record: SessionRecord) -> Optional[SessionState]:
    try:
        return SessionState.from_dict(json.loads(record.state_json))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(f"Unreadable state for session {record.session_id}: {e}")
        return None


def _to_artifact(record: ArtifactRecord) -> ContextArtifact:
    metadata: Optional[Dict[str, Any]] = None
    if record.metadata_json:
        try:
            metadata = json.loads(record.metadata_json)
        except ValueError as e:
            logger.warning(f"Unreadable metadata for artifact {record.artifact_id}: {e}")
    return ContextArtifact(
        artifact_id=record.artifact_id,
        artifact_type=record.artifact_type,
        scope=record.scope,
        content=record.content,
        metadata=metadata,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class Anchor:
    """Session and artifact persistence for one workspace.

    Usage:
        anchor = Anchor(database, "/path/to/workspace")
        anchor.save_session("s1", SessionState(active_files=["src/a.ts"]))
        latest = anchor.get_latest_session()
    """

    def __init__(self, database: ContextDatabase, workspace_path: str):
        self._database = database
        self._workspace_path = str(workspace_path)

    # Sessions

    def save_session(
        self, session_id: str, state: SessionState, name: Optional[str] = None
    ) -> None:
        """Insert or replace a session's state. A None name keeps the stored name."""
        if not session_id:
            raise ValueError("session_id must not be empty")
        self._database.upsert_session(
            session_id,
            self._workspace_path,
            json.dumps(state.to_dict()),
            session_name=name,
        )
        logger.info(f"Saved session {session_id}")

    def restore_session(self, session_id: str) -> Optional[SessionState]:
        record = self._database.get_session(session_id)
        if record is None:
            return None
        return _load_state(record)

    def get_latest_session(self) -> Optional[SavedSession]:
        """Most recently updated session of this workspace."""
        records = self._database.list_sessions(self._workspace_path)
        if not records:
            return None
        latest = records[0]
        state = _load_state(latest)
        if state is None:
            return None
        return SavedSession(
            session_id=latest.session_id,
            state=state,
            name=latest.session_name,
            updated_at=latest.updated_at,
        )

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Session summaries, most recently updated first."""
        return [
            {
                "session_id": record.session_id,
                "name": record.session_name,
                "updated_at": record.updated_at,
            }
            for record in self._database.list_sessions(self._workspace_path)
        ]

    def delete_session(self, session_id: str) -> bool:
        return self._database.delete_session(session_id)

    # Artifacts

    def save_artifact(
        self,
        artifact_id: str,
        artifact_type: str,
        scope: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Insert or update an artifact.

        Raises:
            ValueError: If the id is empty or the type is not an ArtifactType.
        """
        if not artifact_id:
            raise ValueError("artifact_id must not be empty")
        if artifact_type not in ArtifactType.ALL:
            raise ValueError(
                f"Unknown artifact type '{artifact_type}', expected one of {ArtifactType.ALL}"
            )
        self._database.upsert_artifact(artifact_id, artifact_type, scope, content, metadata)
        logger.info(f"Saved {artifact_type} artifact {artifact_id} for scope {scope}")

    def get_artifact(self, artifact_id: str) -> Optional[ContextArtifact]:
        record = self._database.get_artifact(artifact_id)
        return _to_artifact(record) if record is not None else None

    def get_artifacts_for_scope(self, scope: str) -> List[ContextArtifact]:
        """Artifacts for ``scope`` and every path below it, newest first."""
        return [_to_artifact(r) for r in self._database.get_artifacts_by_scope(scope)]

    def delete_artifact(self, artifact_id: str) -> bool:
        return self._database.delete_artifact(artifact_id)
