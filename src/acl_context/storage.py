# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Durable store for skeletons, import edges, sessions and context artifacts.

The database lives in memory (``sqlite3`` ``:memory:`` connection) and the
whole image is serialized to ``<workspace>/.acl/context.db`` after every
mutation, so the file on disk is always a complete, consistent snapshot
("last full write wins").

Batches go through ``transaction()``: explicit BEGIN/COMMIT/ROLLBACK at the
statement level, one serialize after COMMIT, none after ROLLBACK. A failed
serialize resets memory to the image last written, so memory never holds
changes the file lacks.

Tables:
- skeletons: one row per file, upserted by path
- import_graph: (source_path, target_path, import_type) unique edges
- sessions: opaque agent session state
- context_artifacts: opaque notes scoped to a file or directory
- schema_version: applied schema versions
"""

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from acl_context.models import (
    ArtifactRecord,
    ImportEdge,
    SessionRecord,
    SkeletonRecord,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS skeletons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path TEXT NOT NULL UNIQUE,
    file_hash TEXT NOT NULL,
    language TEXT NOT NULL,
    skeleton_json TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_skeletons_file_path ON skeletons(file_path);
CREATE INDEX IF NOT EXISTS idx_skeletons_file_hash ON skeletons(file_hash);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL UNIQUE,
    workspace_path TEXT NOT NULL,
    session_name TEXT,
    state_json TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_sessions_session_id ON sessions(session_id);
CREATE INDEX IF NOT EXISTS idx_sessions_workspace ON sessions(workspace_path);

CREATE TABLE IF NOT EXISTS context_artifacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    artifact_id TEXT NOT NULL UNIQUE,
    artifact_type TEXT NOT NULL,
    scope TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata_json TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_artifacts_type ON context_artifacts(artifact_type);
CREATE INDEX IF NOT EXISTS idx_artifacts_scope ON context_artifacts(scope);

CREATE TABLE IF NOT EXISTS import_graph (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_path TEXT NOT NULL,
    target_path TEXT NOT NULL,
    import_type TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(source_path, target_path, import_type)
);
CREATE INDEX IF NOT EXISTS idx_import_source ON import_graph(source_path);
CREATE INDEX IF NOT EXISTS idx_import_target ON import_graph(target_path);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

Params = Sequence[Any]


class StoreError(Exception):
    """Raised when the durable store cannot read, write or persist."""

    pass


def _utc_now() -> str:
    # Microsecond precision so back-to-back upserts get distinct updated_at values
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContextDatabase:
    """SQLite-backed store, held in memory and serialized whole to disk.

    Thread Safety:
        All public methods are thread-safe via a reentrant lock. A
        transaction holds the lock from BEGIN to COMMIT/ROLLBACK, so the
        store has a single writer at a time.

    Error Handling:
        ``sqlite3.Error`` and ``OSError`` are wrapped in ``StoreError``. A
        failing batch is rolled back and nothing is written to disk. When
        the write to disk itself fails, memory is reset to the last saved
        image.

    Usage:
        db = ContextDatabase(workspace / ".acl" / "context.db")
        with db.transaction():
            db.upsert_skeleton(path, file_hash, "typescript", skeleton_json)
            db.clear_imports_for_file(path)
            db.add_import_edge(path, target, "static")
        db.close()
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None) -> None:
        """Open (or create) the store.

        Args:
            db_path: File the database image is serialized to. If None, the
                store is memory-only and nothing is persisted.

        Raises:
            StoreError: If an existing image cannot be loaded.
        """
        self._db_path = Path(db_path) if db_path is not None else None
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._closed = False
        self._saved_image: Optional[bytes] = None

        try:
            self._conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if self._db_path is not None and self._db_path.exists():
                image = self._db_path.read_bytes()
                if image:
                    self._conn.deserialize(image)
                    logger.info(f"Loaded context database from {self._db_path}")
            self._conn.executescript(_SCHEMA)
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (SCHEMA_VERSION, _utc_now()),
            )
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Failed to open context database {self._db_path}: {e}") from e

        self._save()

    @property
    def db_path(self) -> Optional[Path]:
        return self._db_path

    @property
    def in_transaction(self) -> bool:
        with self._lock:
            return self._tx_depth > 0

    # Persistence

    def _save(self) -> None:
        """Serialize the whole database image to disk (atomic replace).

        On failure the in-memory database is reset to the last image that
        reached disk, so a mutation that was not persisted is not kept.
        """
        if self._db_path is None:
            return
        with self._lock:
            try:
                image = self._conn.serialize()
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self._db_path.with_name(self._db_path.name + ".tmp")
                with open(tmp_path, "wb") as f:
                    f.write(image)
                os.replace(tmp_path, self._db_path)
            except (sqlite3.Error, OSError) as e:
                self._restore_saved_image()
                raise StoreError(f"Failed to persist context database: {e}") from e
            self._saved_image = image

    def _restore_saved_image(self) -> None:
        if self._saved_image is None:
            return
        try:
            self._conn.deserialize(self._saved_image)
            logger.warning("Unsaved changes discarded, context database reset to last save")
        except sqlite3.Error as e:
            logger.error(f"Failed to reset context database to last save: {e}")

    def _query(self, sql: str, params: Params = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Query failed: {e}") from e

    def _query_one(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        rows = self._query(sql, params)
        return rows[0] if rows else None

    def _run(self, sql: str, params: Params = ()) -> int:
        """Execute a mutation; persist immediately unless inside a transaction.

        Returns:
            Number of affected rows.
        """
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
            except sqlite3.Error as e:
                raise StoreError(f"Statement failed: {e}") from e
            if self._tx_depth == 0:
                self._save()
            return cursor.rowcount

    @contextmanager
    def transaction(self) -> Iterator["ContextDatabase"]:
        """Group mutations into one atomic batch.

        Serializes once after COMMIT. Any exception rolls the batch back,
        skips serialization and propagates. Nested use joins the outer batch.
        """
        with self._lock:
            if self._tx_depth > 0:
                self._tx_depth += 1
                try:
                    yield self
                finally:
                    self._tx_depth -= 1
                return

            try:
                self._conn.execute("BEGIN")
            except sqlite3.Error as e:
                raise StoreError(f"Failed to begin transaction: {e}") from e
            self._tx_depth = 1
            try:
                yield self
            except BaseException:
                self._tx_depth = 0
                self._rollback()
                raise

            self._tx_depth = 0
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                raise StoreError(f"Failed to commit transaction: {e}") from e
            self._save()

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
            logger.warning("Context database transaction rolled back")
        except sqlite3.Error as e:
            # ROLLBACK fails only when SQLite already aborted the transaction
            logger.error(f"Rollback failed: {e}")

    # Skeletons

    def get_skeleton(self, file_path: str) -> Optional[SkeletonRecord]:
        row = self._query_one(
            "SELECT file_path, file_hash, language, skeleton_json, created_at, updated_at "
            "FROM skeletons WHERE file_path = ?",
            (file_path,),
        )
        return SkeletonRecord(**dict(row)) if row is not None else None

    def upsert_skeleton(
        self, file_path: str, file_hash: str, language: str, skeleton_json: str
    ) -> None:
        """Insert or fully replace the skeleton record for ``file_path``."""
        now = _utc_now()
        self._run(
            """INSERT INTO skeletons
                   (file_path, file_hash, language, skeleton_json, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(file_path) DO UPDATE SET
                   file_hash = excluded.file_hash,
                   language = excluded.language,
                   skeleton_json = excluded.skeleton_json,
                   updated_at = excluded.updated_at""",
            (file_path, file_hash, language, skeleton_json, now, now),
        )

    def delete_skeleton(self, file_path: str) -> bool:
        return self._run("DELETE FROM skeletons WHERE file_path = ?", (file_path,)) > 0

    def get_skeletons_by_hash(self, file_hash: str) -> List[SkeletonRecord]:
        rows = self._query(
            "SELECT file_path, file_hash, language, skeleton_json, created_at, updated_at "
            "FROM skeletons WHERE file_hash = ?",
            (file_hash,),
        )
        return [SkeletonRecord(**dict(row)) for row in rows]

    def count_skeletons(self) -> int:
        row = self._query_one("SELECT COUNT(*) AS n FROM skeletons")
        return int(row["n"]) if row is not None else 0

    # Import graph

    def add_import_edge(self, source_path: str, target_path: str, import_type: str) -> None:
        """Add an edge; re-adding an identical triple is a no-op."""
        self._run(
            "INSERT OR IGNORE INTO import_graph "
            "(source_path, target_path, import_type, created_at) VALUES (?, ?, ?, ?)",
            (source_path, target_path, import_type, _utc_now()),
        )

    def get_imports(self, source_path: str) -> List[ImportEdge]:
        rows = self._query(
            "SELECT source_path, target_path, import_type FROM import_graph "
            "WHERE source_path = ? ORDER BY id",
            (source_path,),
        )
        return [ImportEdge(**dict(row)) for row in rows]

    def get_importers(self, target_path: str) -> List[ImportEdge]:
        rows = self._query(
            "SELECT source_path, target_path, import_type FROM import_graph "
            "WHERE target_path = ? ORDER BY id",
            (target_path,),
        )
        return [ImportEdge(**dict(row)) for row in rows]

    def get_all_edges(self) -> List[ImportEdge]:
        rows = self._query(
            "SELECT source_path, target_path, import_type FROM import_graph ORDER BY id"
        )
        return [ImportEdge(**dict(row)) for row in rows]

    def clear_imports_for_file(self, source_path: str) -> int:
        """Delete every outgoing edge of ``source_path``."""
        return self._run("DELETE FROM import_graph WHERE source_path = ?", (source_path,))

    # Sessions

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        row = self._query_one(
            "SELECT session_id, workspace_path, session_name, state_json, created_at, updated_at "
            "FROM sessions WHERE session_id = ?",
            (session_id,),
        )
        return SessionRecord(**dict(row)) if row is not None else None

    def list_sessions(self, workspace_path: str) -> List[SessionRecord]:
        """Sessions of a workspace, most recently updated first."""
        rows = self._query(
            "SELECT session_id, workspace_path, session_name, state_json, created_at, updated_at "
            "FROM sessions WHERE workspace_path = ? ORDER BY updated_at DESC, id DESC",
            (workspace_path,),
        )
        return [SessionRecord(**dict(row)) for row in rows]

    def upsert_session(
        self,
        session_id: str,
        workspace_path: str,
        state_json: str,
        session_name: Optional[str] = None,
    ) -> None:
        """Insert or update a session; a None name keeps the stored one."""
        now = _utc_now()
        self._run(
            """INSERT INTO sessions
                   (session_id, workspace_path, session_name, state_json, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id) DO UPDATE SET
                   state_json = excluded.state_json,
                   session_name = COALESCE(excluded.session_name, sessions.session_name),
                   updated_at = excluded.updated_at""",
            (session_id, workspace_path, session_name, state_json, now, now),
        )

    def delete_session(self, session_id: str) -> bool:
        return self._run("DELETE FROM sessions WHERE session_id = ?", (session_id,)) > 0

    # Context artifacts

    def get_artifact(self, artifact_id: str) -> Optional[ArtifactRecord]:
        row = self._query_one(
            "SELECT artifact_id, artifact_type, scope, content, metadata_json, "
            "created_at, updated_at FROM context_artifacts WHERE artifact_id = ?",
            (artifact_id,),
        )
        return ArtifactRecord(**dict(row)) if row is not None else None

    def get_artifacts_by_scope(self, scope: str) -> List[ArtifactRecord]:
        """Artifacts scoped to ``scope`` itself or any path below it, newest first.

        The workspace root (``""`` or ``"."``) matches every artifact.
        """
        columns = (
            "SELECT artifact_id, artifact_type, scope, content, metadata_json, "
            "created_at, updated_at FROM context_artifacts "
        )
        order = "ORDER BY created_at DESC, id DESC"
        prefix = scope.rstrip("/")
        if prefix in ("", "."):
            rows = self._query(columns + order)
        else:
            rows = self._query(
                columns + "WHERE scope = ? OR scope LIKE ? ESCAPE '\\' " + order,
                (prefix, _escape_like(prefix) + "/%"),
            )
        return [ArtifactRecord(**dict(row)) for row in rows]

    def upsert_artifact(
        self,
        artifact_id: str,
        artifact_type: str,
        scope: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        now = _utc_now()
        self._run(
            """INSERT INTO context_artifacts
                   (artifact_id, artifact_type, scope, content, metadata_json,
                    created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(artifact_id) DO UPDATE SET
                   content = excluded.content,
                   metadata_json = excluded.metadata_json,
                   updated_at = excluded.updated_at""",
            (
                artifact_id,
                artifact_type,
                scope,
                content,
                json.dumps(metadata) if metadata is not None else None,
                now,
                now,
            ),
        )

    def delete_artifact(self, artifact_id: str) -> bool:
        return (
            self._run("DELETE FROM context_artifacts WHERE artifact_id = ?", (artifact_id,)) > 0
        )

    # Utility

    def schema_version(self) -> int:
        row = self._query_one("SELECT MAX(version) AS version FROM schema_version")
        return int(row["version"]) if row is not None and row["version"] is not None else 0

    def get_statistics(self) -> Dict[str, Any]:
        """Row counts per table."""
        counts: Dict[str, Any] = {}
        for table in ("skeletons", "import_graph", "sessions", "context_artifacts"):
            row = self._query_one(f"SELECT COUNT(*) AS n FROM {table}")
            counts[table] = int(row["n"]) if row is not None else 0
        counts["db_path"] = str(self._db_path) if self._db_path is not None else None
        return counts

    def close(self) -> None:
        """Persist a final image and close the connection. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._save()
            self._conn.close()
            self._closed = True
            logger.info("Context database closed")
