# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""ContextService - business logic layer for the MCP server.

The service owns one instance of every component for a workspace and wires
them together:
- ContextDatabase: durable store (skeletons, edges, sessions, artifacts)
- SkeletonMapper: skeleton lookup and import graph maintenance
- RelevanceEngine: scoring of direct import neighbors
- Anchor: session state and context artifacts
- FileWatcher: change events routed to debounced cache invalidation

Every request path is validated here before any file operation. Responses
are plain JSON-compatible dicts with workspace-relative paths.
"""

import json
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

import tiktoken

from acl_context.anchor import Anchor, SessionState
from acl_context.analyzers import detect_language
from acl_context.config import Config
from acl_context.file_watcher import ChangeKind, FileWatcher
from acl_context.mapper import SkeletonMapper
from acl_context.models import Skeleton
from acl_context.paths import relative_to_workspace, validate_filepath
from acl_context.relevance import RelevanceEngine, RelevanceScore
from acl_context.storage import ContextDatabase, StoreError

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_DEPTH = 3
PREWARM_COUNT = 5
RECENT_FILES_LIMIT = 20
SCAN_DEPTH = 10
MIN_RELEVANCE_SCORE = 0.1


@dataclass
class PreparedContext:
    """Related files computed for the file an agent is focused on."""

    active_file: str
    related_files: List[RelevanceScore] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


ContextListener = Callable[[PreparedContext], None]


class ContextService:
    """Coordinates skeleton, graph, session and artifact operations.

    Supports dependency injection for testing while building every
    component from the configuration by default.

    Usage:
        service = ContextService(Config(workspace_path))
        service.start()
        service.get_context("src/a.ts")
        service.shutdown()
    """

    def __init__(
        self,
        config: Config,
        database: Optional[ContextDatabase] = None,
        mapper: Optional[SkeletonMapper] = None,
        anchor: Optional[Anchor] = None,
        watcher: Optional[FileWatcher] = None,
    ):
        """Initialize the service with its dependencies.

        Args:
            config: Workspace configuration.
            database: Durable store (default: ``<workspace>/.acl/context.db``).
                A store passed in is not closed by ``shutdown``.
            mapper: Skeleton mapper (default: built from config and database).
            anchor: Session/artifact persistence (default: built on database).
            watcher: File watcher (default: workspace watcher honoring zones).
        """
        self.config = config
        self._workspace = str(config.workspace_path)

        self._owns_database = database is None
        self._database = database if database is not None else ContextDatabase(
            config.database_path
        )
        self._mapper = mapper if mapper is not None else SkeletonMapper(config, self._database)
        self._relevance = RelevanceEngine(self._mapper.graph)
        self._anchor = anchor if anchor is not None else Anchor(self._database, self._workspace)
        self._watcher = (
            watcher
            if watcher is not None
            else FileWatcher(
                self._workspace,
                include_zones=config.include_zones,
                exclude_zones=config.exclude_zones,
            )
        )
        self._watcher.register_callback(self._on_file_event)

        # Lazy initialization to avoid network calls in __init__
        self._token_encoder: Optional[tiktoken.Encoding] = None

        self._recent_files: Deque[str] = deque(maxlen=RECENT_FILES_LIMIT)
        self._last_context: Optional[PreparedContext] = None
        self._context_listeners: List[ContextListener] = []

        self._scan_thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._shut_down = False

        logger.info(f"ContextService initialized with workspace={self._workspace}")

    @property
    def mapper(self) -> SkeletonMapper:
        return self._mapper

    @property
    def anchor(self) -> Anchor:
        return self._anchor

    @property
    def database(self) -> ContextDatabase:
        return self._database

    def _relative(self, path: str) -> str:
        return relative_to_workspace(self._workspace, path)

    def _resolve(self, file_path: str) -> str:
        validate_filepath(file_path)
        return self._mapper.absolute_path(file_path)

    # Lifecycle

    def start(self) -> None:
        """Start watching the workspace and, if configured, the initial scan."""
        self.start_file_watcher()
        if self.config.initial_scan:
            self.scan_workspace()

    def start_file_watcher(self) -> None:
        if not self._watcher.is_running():
            self._watcher.start()

    def stop_file_watcher(self) -> None:
        self._watcher.stop()

    def scan_workspace(self) -> threading.Thread:
        """Warm the cache with every supported file in a background thread.

        Returns:
            The scan thread (already started).
        """
        if self._scan_thread is not None and self._scan_thread.is_alive():
            return self._scan_thread
        self._scan_thread = threading.Thread(
            target=self._run_scan, name="acl-initial-scan", daemon=True
        )
        self._scan_thread.start()
        return self._scan_thread

    def _run_scan(self) -> int:
        logger.info(f"Starting initial scan of {self._workspace}")
        directory = self._mapper.map_directory(".", SCAN_DEPTH)
        scanned = 0
        for info in directory.files:
            if self._stopping.is_set():
                logger.info("Initial scan interrupted by shutdown")
                break
            if info.language is None:
                continue
            try:
                if self._mapper.get_skeleton(info.path) is not None:
                    scanned += 1
            except StoreError as e:
                logger.error(f"Initial scan failed to store {info.path}: {e}")
        logger.info(f"Initial scan complete: {scanned} of {directory.total_files} files indexed")
        return scanned

    def shutdown(self) -> None:
        """Stop the watcher and scan, drop timers, close an owned store. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("ContextService shutting down...")

        self._stopping.set()
        self.stop_file_watcher()
        if self._scan_thread is not None:
            self._scan_thread.join(timeout=5.0)
        self._mapper.clear()
        self._last_context = None

        if self._owns_database:
            self._database.close()
        logger.info("ContextService shutdown complete")

    # File events

    def _on_file_event(self, file_path: str, kind: str) -> None:
        if detect_language(file_path) is None:
            return
        if kind == ChangeKind.DELETED:
            self._mapper.on_file_deleted(file_path)
            if self._last_context is not None and self._last_context.active_file == file_path:
                self._last_context = None
        else:
            self._recent_files.append(file_path)
            self._mapper.on_file_changed(file_path)

    @property
    def recent_files(self) -> List[str]:
        """Recently changed files, oldest first."""
        return list(self._recent_files)

    # Token counting

    def _get_token_encoder(self) -> Optional[tiktoken.Encoding]:
        """Get or initialize the tiktoken encoder.

        Returns:
            tiktoken.Encoding or None if unavailable.
        """
        if self._token_encoder is None:
            try:
                self._token_encoder = tiktoken.get_encoding("cl100k_base")
            except Exception as e:
                logger.warning(f"Failed to initialize tiktoken encoder: {e}")
                return None
        return self._token_encoder

    def _count_tokens(self, text: str) -> int:
        """Count tokens with cl100k_base, or ~1.3 tokens per word without it."""
        encoder = self._get_token_encoder()
        if encoder is not None:
            return len(encoder.encode(text))
        if not text:
            return 0
        return int(len(text.split()) * 1.3)

    # Context

    def _format_skeleton(self, skeleton: Skeleton) -> Dict[str, Any]:
        formatted: Dict[str, Any] = {
            "file": self._relative(skeleton.file_path),
            "language": skeleton.language,
            "exports": [e.to_dict() for e in skeleton.exports],
            "imports": [
                {
                    "source": i.source,
                    "specifiers": list(i.specifiers),
                    "import_type": i.import_type,
                    "line": i.line,
                }
                for i in skeleton.imports
            ],
            "classes": [
                {
                    "name": c.name,
                    "line": c.line,
                    "extends": c.extends,
                    "implements": list(c.implements) if c.implements else None,
                    "methods": [m.name for m in c.methods],
                    "property_count": len(c.properties),
                }
                for c in skeleton.classes
            ],
            "functions": [
                {
                    "name": f.name,
                    "line": f.line,
                    "async": f.is_async,
                    "exported": f.is_exported,
                }
                for f in skeleton.functions
            ],
        }
        if skeleton.parse_errors:
            formatted["parse_errors"] = list(skeleton.parse_errors)
        formatted["token_estimate"] = self._count_tokens(json.dumps(formatted))
        return formatted

    def get_skeleton(self, file_path: str) -> Optional[Skeleton]:
        return self._mapper.get_skeleton(self._resolve(file_path))

    def get_context(self, path: str, depth: int = DEFAULT_CONTEXT_DEPTH) -> Dict[str, Any]:
        """Skeleton of a file, or the file listing of a directory.

        Raises:
            ValueError: If the path is invalid.
            FileNotFoundError: If the path does not exist.
        """
        absolute = self._resolve(path)

        if os.path.isfile(absolute):
            skeleton = self._mapper.get_skeleton(absolute)
            if skeleton is None:
                return {
                    "type": "file",
                    "file": self._relative(absolute),
                    "message": f"Could not parse file: {path}",
                }
            return {"type": "file", **self._format_skeleton(skeleton)}

        if os.path.isdir(absolute):
            directory = self._mapper.map_directory(absolute, depth)
            return {
                "type": "directory",
                "path": directory.relative_path,
                "total_files": directory.total_files,
                "subdirectories": len(directory.subdirectories),
                "files": [
                    {"path": f.relative_path, "language": f.language} for f in directory.files
                ],
            }

        raise FileNotFoundError(f"Path not found: {path}")

    def prepare_context(self, file_path: str) -> PreparedContext:
        """Score the neighbors of a focused file and pre-warm the best ones."""
        absolute = self._resolve(file_path)
        scores = self._relevance.get_relevant_files(
            absolute,
            max_results=self.config.related_max_results,
            min_score=MIN_RELEVANCE_SCORE,
        )
        scores = self._relevance.apply_recency_boost(scores, self._recent_files)
        scores.sort(key=lambda s: (-s.score, s.file_path))

        for score in scores[:PREWARM_COUNT]:
            try:
                self._mapper.get_skeleton(score.file_path)
            except StoreError as e:
                logger.warning(f"Could not pre-warm {score.file_path}: {e}")

        context = PreparedContext(active_file=absolute, related_files=scores)
        self._last_context = context

        for listener in list(self._context_listeners):
            try:
                listener(context)
            except Exception as e:
                logger.error(f"Context listener failed for {absolute}: {e}")
        return context

    def get_last_context(self) -> Optional[PreparedContext]:
        return self._last_context

    def add_context_listener(self, listener: ContextListener) -> None:
        self._context_listeners.append(listener)

    def get_related(
        self, path: str, depth: int = 1, max_results: Optional[int] = None
    ) -> Dict[str, Any]:
        """Related files: relevance scores first, then graph neighbors up to ``depth``."""
        absolute = self._resolve(path)
        if max_results is None:
            max_results = self.config.related_max_results

        scores = self._relevance.get_relevant_files(absolute, max_results=max_results)
        by_path = {s.file_path: s for s in scores}
        ordered = [s.file_path for s in scores]
        for related in self._mapper.get_related_files(absolute, depth):
            if related not in by_path:
                ordered.append(related)

        results = []
        for related in ordered[:max_results]:
            entry: Dict[str, Any] = {"path": self._relative(related)}
            score = by_path.get(related)
            if score is not None:
                entry["score"] = round(score.score, 4)
                entry["reason"] = score.reason
            results.append(entry)
        return {"path": self._relative(absolute), "related": results}

    def refresh(self, paths: Iterable[str]) -> Dict[str, Any]:
        """Force a re-parse of each path and report per-path success."""
        results: List[Dict[str, Any]] = []
        for path in paths:
            try:
                skeleton = self._mapper.refresh_skeleton(self._resolve(path))
                results.append({"path": path, "success": True, "parsed": skeleton is not None})
            except (ValueError, StoreError) as e:
                logger.warning(f"Refresh failed for {path}: {e}")
                results.append({"path": path, "success": False, "error": str(e)})
        return {"refreshed": results}

    # Sessions

    def save_session(
        self, session_id: str, state: Dict[str, Any], name: Optional[str] = None
    ) -> Dict[str, Any]:
        self._anchor.save_session(session_id, SessionState.from_dict(state), name)
        return {"saved": True, "session_id": session_id, "name": name}

    def restore_session(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Restore a session by id, or the latest one when no id is given.

        Raises:
            LookupError: If the requested session does not exist.
        """
        if session_id:
            state = self._anchor.restore_session(session_id)
            if state is None:
                raise LookupError(f"Session not found: {session_id}")
            return {"session_id": session_id, "state": state.to_dict()}

        latest = self._anchor.get_latest_session()
        if latest is None:
            return {"message": "No sessions found"}
        return latest.to_dict()

    def list_sessions(self) -> Dict[str, Any]:
        return {"sessions": self._anchor.list_sessions()}

    # Artifacts

    def save_artifact(
        self,
        artifact_id: str,
        artifact_type: str,
        scope: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        relative_scope = self._relative(self._resolve(scope))
        self._anchor.save_artifact(artifact_id, artifact_type, relative_scope, content, metadata)
        return {"saved": True, "id": artifact_id, "scope": relative_scope}

    def get_artifacts(self, scope: str) -> Dict[str, Any]:
        relative_scope = self._relative(self._resolve(scope))
        artifacts = self._anchor.get_artifacts_for_scope(relative_scope)
        return {"scope": relative_scope, "artifacts": [a.to_dict() for a in artifacts]}

    # Statistics

    def get_stats(self) -> Dict[str, Any]:
        last = self._last_context
        return {
            "workspace": self._workspace,
            "server": {
                "name": self.config.server_name,
                "version": self.config.server_version,
            },
            "cache": self._mapper.get_stats(),
            "store": self._database.get_statistics(),
            "watcher": {"running": self._watcher.is_running()},
            "last_context": self._relative(last.active_file) if last is not None else None,
        }
