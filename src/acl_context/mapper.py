# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""SkeletonMapper - memory, store and parser orchestration.

Lookup order for a file:
1. SkeletonCache (fingerprint-validated memory layer)
2. ContextDatabase skeleton record (re-validated against the live file hash
   when ``store_hash_validation`` is on)
3. Cold parse, then write-through: memory entry plus one store transaction
   that upserts the skeleton record and replaces the file's outgoing edges

Concurrent cold requests for one path share a single in-flight Future, so a
burst of requests produces one parse and one write-back.

Change handling is debounced: ``on_file_changed`` and ``on_file_deleted``
schedule an invalidation that, once the quiet period passes, drops the memory
entry and deletes the skeleton record with its outgoing edges.
"""

import logging
import os
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Iterable, List, Optional

from acl_context.analyzers import detect_language, is_project_file, parse_file
from acl_context.cache import SkeletonCache, compute_fingerprint
from acl_context.config import Config
from acl_context.graph import ImportGraph
from acl_context.models import DirectoryMap, FileInfo, ImportStatement, Skeleton
from acl_context.paths import (
    ACL_DIR_NAME,
    is_excluded,
    relative_to_workspace,
    resolve_in_workspace,
)
from acl_context.storage import ContextDatabase

logger = logging.getLogger(__name__)

# Parser signature: (filepath, max_size_bytes) -> Skeleton | None
SkeletonParser = Callable[[str, int], Optional[Skeleton]]

RESOLVE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs")

DEFAULT_MAP_DEPTH = 3


class SkeletonMapper:
    """Serves skeletons and maintains the import graph for one workspace.

    Thread Safety:
        Safe to call from request threads, the watcher thread and debounce
        timer threads. The cache and the database carry their own locks;
        ``_inflight_lock`` only guards the in-flight map.

    Usage:
        mapper = SkeletonMapper(config, database)
        skeleton = mapper.get_skeleton("src/a.ts")
        mapper.on_file_changed("src/a.ts")
        related = mapper.get_related_files("src/a.ts", depth=2)
    """

    def __init__(
        self,
        config: Config,
        database: ContextDatabase,
        cache: Optional[SkeletonCache[Skeleton]] = None,
        parser: SkeletonParser = parse_file,
    ):
        """Initialize the mapper.

        Args:
            config: Workspace configuration.
            database: Durable store shared with the rest of the service.
            cache: Memory layer (default: sized from config).
            parser: Text-to-skeleton function (default: regex/AST parser).
        """
        self._config = config
        self._database = database
        self._workspace = str(config.workspace_path)
        self._cache: SkeletonCache[Skeleton] = (
            cache
            if cache is not None
            else SkeletonCache(
                max_size=config.cache_max_skeletons,
                debounce_ms=config.cache_debounce_ms,
            )
        )
        self._parser = parser
        self._graph = ImportGraph(database, workspace_path=self._workspace)

        self._inflight: Dict[str, "Future[Optional[Skeleton]]"] = {}
        self._inflight_lock = threading.Lock()

        logger.info(f"SkeletonMapper initialized for {self._workspace}")

    @property
    def cache(self) -> SkeletonCache[Skeleton]:
        return self._cache

    @property
    def graph(self) -> ImportGraph:
        return self._graph

    def absolute_path(self, file_path: str) -> str:
        """Absolute, normalized form of a workspace-relative or absolute path."""
        return resolve_in_workspace(self._workspace, file_path)

    def _language_enabled(self, path: str) -> bool:
        language = detect_language(path)
        return language is not None and language in self._config.languages

    # Skeleton lookup

    def get_skeleton(self, file_path: str) -> Optional[Skeleton]:
        """Return the skeleton for a file, parsing it only when necessary.

        Args:
            file_path: Workspace-relative or absolute path.

        Returns:
            The skeleton, or None if the file is missing, unreadable or in a
            language that is not enabled.

        Raises:
            StoreError: If writing back to the durable store fails.
        """
        path = self.absolute_path(file_path)
        if not self._language_enabled(path):
            return None

        cached = self._cache.get_if_valid(path)
        if cached is not None:
            return cached

        with self._inflight_lock:
            future = self._inflight.get(path)
            owner = future is None
            if future is None:
                future = Future()
                self._inflight[path] = future

        if not owner:
            logger.debug(f"Joining in-flight load for {path}")
            return future.result()

        try:
            skeleton = self._load(path)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(skeleton)
            return skeleton
        finally:
            with self._inflight_lock:
                self._inflight.pop(path, None)

    def get_skeletons(self, file_paths: Iterable[str]) -> Dict[str, Skeleton]:
        """Skeletons keyed by the requested path; absent files are omitted."""
        results: Dict[str, Skeleton] = {}
        for file_path in file_paths:
            skeleton = self.get_skeleton(file_path)
            if skeleton is not None:
                results[file_path] = skeleton
        return results

    def _load(self, path: str) -> Optional[Skeleton]:
        record = self._database.get_skeleton(path)
        if record is not None:
            skeleton = self._from_store(path, record.file_hash, record.skeleton_json)
            if skeleton is not None:
                return skeleton
        return self._parse_and_store(path)

    def _from_store(self, path: str, file_hash: str, skeleton_json: str) -> Optional[Skeleton]:
        """Rebuild a stored skeleton, or drop the record if it is stale."""
        fingerprint: Optional[str] = None
        if self._config.store_hash_validation:
            fingerprint = compute_fingerprint(path)
            if fingerprint != file_hash:
                logger.debug(f"Stored skeleton is stale: {path}")
                self._forget(path)
                return None

        try:
            skeleton = Skeleton.from_json(skeleton_json)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable stored skeleton for {path}: {e}")
            self._forget(path)
            return None

        self._cache.set(path, skeleton, fingerprint)
        logger.debug(f"Skeleton loaded from store: {path}")
        return skeleton

    def _parse_and_store(self, path: str) -> Optional[Skeleton]:
        # Hash before parsing: an edit during the parse leaves a stale hash,
        # which the next read detects
        fingerprint = compute_fingerprint(path)
        if fingerprint is None:
            return None

        skeleton = self._parser(path, self._config.max_file_size_bytes)
        if skeleton is None:
            return None

        self._persist(path, skeleton, fingerprint)
        self._cache.set(path, skeleton, fingerprint)
        logger.debug(f"Skeleton parsed: {path} ({len(skeleton.imports)} imports)")
        return skeleton

    def _persist(self, path: str, skeleton: Skeleton, fingerprint: str) -> None:
        """Upsert the record and replace outgoing edges in one transaction."""
        with self._database.transaction():
            self._database.upsert_skeleton(path, fingerprint, skeleton.language, skeleton.to_json())
            self._database.clear_imports_for_file(path)
            for statement in skeleton.imports:
                if not statement.is_local:
                    continue
                for target in self.resolve_import(path, statement, skeleton.language):
                    if target != path:
                        self._database.add_import_edge(path, target, statement.import_type)

    def _forget(self, path: str) -> None:
        with self._database.transaction():
            self._database.delete_skeleton(path)
            self._database.clear_imports_for_file(path)

    # Refresh and change handling

    def refresh_skeleton(self, file_path: str) -> Optional[Skeleton]:
        """Drop every cached form of a file and parse it again."""
        path = self.absolute_path(file_path)
        self._cache.invalidate(path)
        self._forget(path)
        if not self._language_enabled(path):
            return None
        return self._parse_and_store(path)

    def on_file_changed(self, file_path: str) -> None:
        """Schedule a debounced invalidation of the file in both layers."""
        path = self.absolute_path(file_path)
        self._cache.invalidate_debounced(path, on_invalidated=lambda: self._forget(path))

    def on_file_deleted(self, file_path: str) -> None:
        """Same as a change: the record and outgoing edges go after the quiet period."""
        self.on_file_changed(file_path)

    # Import graph

    def resolve_import(
        self, from_path: str, statement: ImportStatement, language: Optional[str] = None
    ) -> List[str]:
        """Resolve a local import to existing files.

        Python dotted relative imports (``.models``, ``..pkg.mod``,
        ``from . import name``) map leading dots to parent directories.
        Everything else is resolved as a path: the exact file, then for each
        known extension in order ``<base><ext>`` followed by
        ``<base>/index<ext>``.

        Returns:
            Resolved absolute paths; empty when nothing exists.
        """
        if language == "python" and statement.source.startswith("."):
            return self._resolve_python(from_path, statement)
        resolved = self._resolve_path(from_path, statement.source)
        return [resolved] if resolved is not None else []

    def _resolve_path(self, from_path: str, source: str) -> Optional[str]:
        base = os.path.normpath(os.path.join(os.path.dirname(from_path), source))
        if os.path.isfile(base):
            return base
        for ext in RESOLVE_EXTENSIONS:
            for candidate in (base + ext, os.path.join(base, f"index{ext}")):
                if os.path.isfile(candidate):
                    return candidate
        return None

    def _resolve_python(self, from_path: str, statement: ImportStatement) -> List[str]:
        source = statement.source
        module = source.lstrip(".")
        level = len(source) - len(module)

        base = os.path.dirname(from_path)
        for _ in range(level - 1):
            base = os.path.dirname(base)

        def module_file(stem: str) -> Optional[str]:
            for candidate in (stem + ".py", os.path.join(stem, "__init__.py")):
                if os.path.isfile(candidate):
                    return candidate
            return None

        if module:
            found = module_file(os.path.join(base, *module.split(".")))
            return [found] if found is not None else []

        # from . import a, b: each name may be a submodule
        targets = []
        for name in statement.specifiers:
            found = module_file(os.path.join(base, name))
            if found is not None and found not in targets:
                targets.append(found)
        if not targets:
            package_init = os.path.join(base, "__init__.py")
            if os.path.isfile(package_init):
                targets.append(package_init)
        return targets

    def get_imports(self, file_path: str) -> List[str]:
        """Import sources of a file, local ones resolved to absolute paths.

        Local imports that resolve to no existing file are returned as the
        normalized joined path; package imports are returned unchanged.
        """
        path = self.absolute_path(file_path)
        skeleton = self.get_skeleton(path)
        if skeleton is None:
            return []

        results: List[str] = []
        for statement in skeleton.imports:
            if not statement.is_local:
                results.append(statement.source)
                continue
            resolved = self.resolve_import(path, statement, skeleton.language)
            if resolved:
                results.extend(resolved)
            else:
                results.append(
                    os.path.normpath(os.path.join(os.path.dirname(path), statement.source))
                )
        return results

    def get_related_files(self, file_path: str, depth: int = 1) -> List[str]:
        """Files within ``depth`` import hops in either direction."""
        return self._graph.related_files(self.absolute_path(file_path), depth)

    # Directory enumeration

    def map_directory(self, dir_path: str, max_depth: int = DEFAULT_MAP_DEPTH) -> DirectoryMap:
        """List supported files under a directory without parsing them.

        Args:
            dir_path: Workspace-relative or absolute directory.
            max_depth: Levels of subdirectories descended into.

        Returns:
            DirectoryMap with files in walk order (entries sorted by name).
        """
        path = self.absolute_path(dir_path)
        result = DirectoryMap(path=path, relative_path=relative_to_workspace(self._workspace, path))
        self._walk(path, result, 0, max_depth)
        return result

    def _walk(self, directory: str, result: DirectoryMap, depth: int, max_depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            return

        for entry in entries:
            if entry.name == ACL_DIR_NAME:
                continue
            relative_path = relative_to_workspace(self._workspace, entry.path)
            if is_excluded(relative_path, self._config.include_zones, self._config.exclude_zones):
                continue
            try:
                is_dir = entry.is_dir()
                is_file = entry.is_file()
            except OSError:
                continue

            if is_dir:
                result.subdirectories.append(relative_path)
                self._walk(entry.path, result, depth + 1, max_depth)
            elif is_file:
                language = detect_language(entry.path)
                if language is not None or is_project_file(entry.name):
                    result.files.append(
                        FileInfo(path=entry.path, relative_path=relative_path, language=language)
                    )
                    result.total_files += 1

    def get_stats(self) -> Dict[str, int]:
        stats = self._cache.stats()
        return {
            "cache_size": stats.size,
            "max_cache_size": stats.max_size,
            "cache_hits": stats.hits,
            "cache_misses": stats.misses,
            "invalidations": stats.invalidations,
            "evictions": stats.evictions,
            "pending_invalidations": stats.pending_invalidations,
            "stored_skeletons": self._database.count_skeletons(),
        }

    def clear(self) -> None:
        """Drop the memory layer and cancel pending invalidations."""
        self._cache.clear()
