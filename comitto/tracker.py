"""Changed-path bookkeeping between filesystem events and commits."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

import pathspec

logger = logging.getLogger(__name__)

# Directory names never worth committing on their own: VCS internals and
# dependency trees.
DEFAULT_IGNORED_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        "bower_components",
        ".venv",
        "venv",
        "__pycache__",
        ".tox",
        ".comitto",
    }
)


class IgnorePolicy:
    """Decides which paths the tracker refuses to record.

    A path is ignored when any of its components is a VCS-internal or
    dependency directory, or when it matches the repository's ``.gitignore``
    (only if ``use_gitignore`` is on). The ``.gitignore`` file is parsed once
    by :meth:`reload` and again whenever configuration changes.
    """

    def __init__(
        self,
        repo_root: str | Path,
        use_gitignore: bool = True,
        ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS,
    ) -> None:
        self.repo_root = Path(os.path.abspath(str(repo_root)))
        self.use_gitignore = use_gitignore
        self.ignored_dirs = frozenset(ignored_dirs)
        self._spec: Optional[pathspec.PathSpec] = None

    def reload(self, use_gitignore: Optional[bool] = None) -> None:
        if use_gitignore is not None:
            self.use_gitignore = use_gitignore
        self._spec = None
        if not self.use_gitignore:
            return
        gitignore = self.repo_root / ".gitignore"
        if not gitignore.is_file():
            return
        try:
            lines = gitignore.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as exc:
            logger.warning("Could not read %s: %s", gitignore, exc)
            return
        self._spec = pathspec.PathSpec.from_lines("gitwildmatch", lines)
        logger.debug("Loaded %d .gitignore lines from %s", len(lines), gitignore)

    def _relative(self, path: str) -> Optional[str]:
        try:
            rel = os.path.relpath(path, str(self.repo_root))
        except ValueError:
            # Different drive on Windows
            return None
        if rel.startswith(".."):
            return None
        return rel.replace(os.sep, "/")

    def is_ignored(self, path: str | Path) -> bool:
        absolute = os.path.abspath(str(path))
        rel = self._relative(absolute)
        parts = (rel or absolute.replace(os.sep, "/")).split("/")
        if any(part in self.ignored_dirs for part in parts):
            return True
        if self._spec is not None and rel:
            return self._spec.match_file(rel)
        return False


@dataclass(frozen=True)
class TrackerSnapshot:
    paths: frozenset[str] = field(default_factory=frozenset)

    @property
    def count(self) -> int:
        return len(self.paths)

    def __bool__(self) -> bool:
        return bool(self.paths)


class ChangeTracker:
    """Deduplicating set of changed paths accumulated from watch events."""

    def __init__(self, policy: Optional[IgnorePolicy] = None) -> None:
        self.policy = policy
        self._paths: set[str] = set()

    def record(self, path: str | Path) -> bool:
        """Add ``path`` unless ignored. Returns True when it was recorded."""
        absolute = os.path.abspath(str(path))
        if self.policy is not None and self.policy.is_ignored(absolute):
            return False
        self._paths.add(absolute)
        return True

    def record_many(self, paths: Iterable[str | Path]) -> int:
        return sum(1 for path in paths if self.record(path))

    def snapshot(self) -> TrackerSnapshot:
        return TrackerSnapshot(frozenset(self._paths))

    def snapshot_and_clear(self) -> TrackerSnapshot:
        """Return current membership and empty the set.

        Only called once a commit is confirmed, so a failed attempt keeps
        the tracked changes for the next one.
        """
        snap = TrackerSnapshot(frozenset(self._paths))
        self._paths.clear()
        return snap

    def clear(self) -> None:
        self._paths.clear()

    @property
    def paths(self) -> frozenset[str]:
        return frozenset(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        return os.path.abspath(str(path)) in self._paths
