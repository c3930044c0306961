"""Filesystem watching on top of watchdog.

The observer runs in its own thread; every event is turned into an
:class:`~comitto.events.Event` and handed to a sink callable. The
orchestrator's sink moves it onto the event loop with
``call_soon_threadsafe``, so nothing here touches asyncio.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .events import Event, EventKind

logger = logging.getLogger(__name__)

Sink = Callable[[Event], None]


class _WorkspaceHandler(FileSystemEventHandler):
    def __init__(self, watcher: "WorkspaceWatcher") -> None:
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.handle_path(EventKind.FILE_CREATED, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.handle_path(EventKind.FILE_CHANGED, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.handle_path(EventKind.FILE_DELETED, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._watcher.handle_path(EventKind.FILE_DELETED, event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._watcher.handle_path(EventKind.FILE_CREATED, dest)


class WorkspaceWatcher:
    """Watches a working tree and reports file and branch changes.

    Events inside the git directory are dropped, except for writes to
    ``HEAD`` that change its content, which become ``BRANCH_SWITCHED``.
    """

    def __init__(
        self,
        root: str | Path,
        sink: Sink,
        *,
        git_dir: Optional[str | Path] = None,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self.root = Path(os.path.abspath(str(root)))
        self.git_dir = Path(os.path.abspath(str(git_dir or self.root / ".git")))
        self.head_path = self.git_dir / "HEAD"
        self._sink = sink
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None
        self._last_head = self._read_head()

    def _read_head(self) -> Optional[str]:
        try:
            return self.head_path.read_text(encoding="utf-8", errors="replace").strip()
        except OSError:
            return None

    def _inside_git_dir(self, path: Path) -> bool:
        return path == self.git_dir or self.git_dir in path.parents

    def handle_path(self, kind: EventKind, raw_path: str | bytes) -> None:
        if isinstance(raw_path, bytes):
            raw_path = os.fsdecode(raw_path)
        path = Path(os.path.abspath(raw_path))
        if path == self.head_path:
            head = self._read_head()
            if head is not None and head != self._last_head:
                logger.debug("HEAD changed: %s -> %s", self._last_head, head)
                self._last_head = head
                self._sink(Event(EventKind.BRANCH_SWITCHED, str(path)))
            return
        if self._inside_git_dir(path):
            return
        self._sink(Event(kind, str(path)))

    def start(self) -> None:
        if self.is_alive():
            return
        observer = self._observer_factory()
        observer.schedule(_WorkspaceHandler(self), str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self.root)

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=5)
        logger.debug("Stopped watching %s", self.root)

    def restart(self) -> None:
        self.stop()
        self.start()

    def is_alive(self) -> bool:
        return self._observer is not None and self._observer.is_alive()
