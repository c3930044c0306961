"""Pure decision logic for starting an automatic commit attempt.

Nothing here touches the filesystem, git or the clock unless ``now`` is left
out, which makes every predicate testable in isolation.
"""

from __future__ import annotations

import fnmatch
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from .config import TriggerRules
from .tracker import ChangeTracker

PathSource = Union[ChangeTracker, Iterable[str]]


@dataclass(frozen=True)
class TriggerSignals:
    """Individual predicate results behind one trigger decision."""

    specific_file_changed: bool
    min_changes_reached: bool
    file_threshold_reached: bool
    time_threshold_passed: bool

    @property
    def enough_changes(self) -> bool:
        return (
            self.specific_file_changed
            or self.min_changes_reached
            or self.file_threshold_reached
        )

    @property
    def fire(self) -> bool:
        # The time window is a rate limiter and is never bypassed; the other
        # three are alternative "enough happened" signals.
        return self.time_threshold_passed and self.enough_changes


def _matches_specific(path: str, wanted: str) -> bool:
    normalized = path.replace("\\", "/")
    if any(ch in wanted for ch in "*?["):
        return fnmatch.fnmatch(normalized, wanted) or fnmatch.fnmatch(
            normalized, "*/" + wanted.lstrip("/")
        )
    return wanted in normalized


def _paths_of(source: PathSource) -> frozenset[str]:
    if isinstance(source, ChangeTracker):
        return source.paths
    return frozenset(source)


def evaluate(
    source: PathSource,
    rules: TriggerRules,
    last_commit_time: Optional[float],
    now: Optional[float] = None,
) -> TriggerSignals:
    """Compute every trigger predicate for the current tracker state.

    ``last_commit_time`` and ``now`` are epoch seconds; ``None`` for the
    former means no commit happened yet, which always satisfies the window.
    """
    paths = _paths_of(source)
    count = len(paths)
    current = time.time() if now is None else now

    specific = bool(rules.specific_files) and any(
        _matches_specific(path, wanted)
        for wanted in rules.specific_files
        for path in paths
    )

    if not rules.enforce_time_threshold or last_commit_time is None:
        time_ok = True
    else:
        elapsed = current - last_commit_time
        time_ok = elapsed >= rules.time_threshold_minutes * 60

    return TriggerSignals(
        specific_file_changed=specific,
        min_changes_reached=count >= rules.min_change_count,
        file_threshold_reached=count >= rules.file_count_threshold,
        time_threshold_passed=time_ok,
    )


def should_fire(
    source: PathSource,
    rules: TriggerRules,
    last_commit_time: Optional[float],
    now: Optional[float] = None,
) -> bool:
    """Return True when an automatic commit attempt should begin."""
    return evaluate(source, rules, last_commit_time, now).fire
