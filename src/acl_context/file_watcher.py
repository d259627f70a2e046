# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""File system watcher feeding change events to the skeleton cache.

This module turns watchdog events into ``(path, kind)`` notifications:
- created / modified -> ``changed``
- deleted -> ``deleted``
- moved -> ``deleted`` for the old path, ``changed`` for the new one

Directory events are dropped. Paths under the workspace's data directory,
common dependency/build directories and configured exclude zones are ignored.
When include zones are configured only those subtrees are watched.

Debouncing is not done here: every event is forwarded and the cache
coalesces bursts per path.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional

from watchdog.events import FileMovedEvent, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from acl_context.paths import ACL_DIR_NAME, is_excluded, relative_to_workspace

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


class ChangeKind:
    """Kinds of file change notifications."""

    CHANGED = "changed"
    DELETED = "deleted"


# Callback signature: (filepath: str, kind: str) -> None
ChangeCallback = Callable[[str, str], None]


class FileWatcher:
    """Watches a workspace and notifies registered callbacks.

    Thread Safety:
        Callbacks are invoked synchronously from the watchdog observer
        thread. They should be thread-safe and return quickly.

    Usage:
        watcher = FileWatcher("/path/to/workspace", exclude_zones=["vendor"])
        watcher.register_callback(lambda path, kind: print(path, kind))
        watcher.start()
        ...
        watcher.stop()
    """

    ALWAYS_IGNORED = (
        ACL_DIR_NAME,
        ".git",
        "node_modules",
        "dist",
        "build",
        "__pycache__",
    )

    def __init__(
        self,
        workspace_path: str,
        include_zones: Optional[Iterable[str]] = None,
        exclude_zones: Optional[Iterable[str]] = None,
    ):
        self.workspace_path = Path(workspace_path).resolve()
        self._include_zones: List[str] = list(include_zones or [])
        self._exclude_zones: List[str] = list(exclude_zones or [])
        self._callbacks: List[ChangeCallback] = []

        self._observer: Optional[BaseObserver] = None
        self._event_handler = _ChangeEventHandler(self)

        logger.info(f"FileWatcher initialized for {self.workspace_path}")

    def should_ignore(self, file_path: str) -> bool:
        """Whether events for ``file_path`` are dropped."""
        relative_path = relative_to_workspace(self.workspace_path, file_path)
        if relative_path == file_path:
            # Outside the workspace
            return True
        if is_excluded(relative_path, [], self.ALWAYS_IGNORED):
            return True
        return is_excluded(relative_path, self._include_zones, self._exclude_zones)

    def register_callback(self, callback: ChangeCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)
            logger.debug(f"Registered change callback: {callback}")

    def unregister_callback(self, callback: ChangeCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)
            logger.debug(f"Unregistered change callback: {callback}")

    def notify(self, file_path: str, kind: str) -> None:
        """Deliver one event to every callback.

        A failing callback is logged and does not stop the others.
        """
        if self.should_ignore(file_path):
            return
        logger.debug(f"Event: {kind} - {file_path}")
        for callback in list(self._callbacks):
            try:
                callback(file_path, kind)
            except Exception as e:
                logger.error(f"Change callback failed for {file_path}: {e}")

    def _watch_roots(self) -> List[Path]:
        if not self._include_zones:
            return [self.workspace_path]
        roots = []
        for zone in self._include_zones:
            root = self.workspace_path / zone
            if root.is_dir():
                roots.append(root)
            else:
                logger.warning(f"Include zone does not exist, not watching: {root}")
        return roots

    def start(self) -> None:
        """Start watching.

        Raises:
            RuntimeError: If the watcher is already running.
        """
        if self.is_running():
            raise RuntimeError("FileWatcher is already running")

        self._observer = Observer()
        for root in self._watch_roots():
            self._observer.schedule(  # type: ignore  # watchdog types vary by version
                self._event_handler, str(root), recursive=True
            )
        self._observer.start()  # type: ignore  # watchdog types vary by version
        logger.info(f"FileWatcher started, monitoring {self.workspace_path}")

    def stop(self) -> None:
        """Stop watching; blocks until the observer thread ends (5s timeout)."""
        if self._observer is not None and self._observer.is_alive():
            self._observer.stop()  # type: ignore  # watchdog types vary by version
            self._observer.join(timeout=5.0)
            logger.info("FileWatcher stopped")
        self._observer = None

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()


class _ChangeEventHandler(FileSystemEventHandler):
    """Maps watchdog events onto FileWatcher.notify."""

    def __init__(self, watcher: FileWatcher):
        super().__init__()
        self.watcher = watcher

    def _forward(self, event: FileSystemEvent, kind: str) -> None:
        if event.is_directory:
            return
        self.watcher.notify(str(event.src_path), kind)

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event, ChangeKind.CHANGED)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event, ChangeKind.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(event, ChangeKind.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory or not isinstance(event, FileMovedEvent):
            return
        self.watcher.notify(str(event.src_path), ChangeKind.DELETED)
        self.watcher.notify(str(event.dest_path), ChangeKind.CHANGED)
