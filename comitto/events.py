"""Events carried on the orchestrator's channel."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class EventKind(str, Enum):
    FILE_CHANGED = "file_changed"
    FILE_CREATED = "file_created"
    FILE_DELETED = "file_deleted"
    BRANCH_SWITCHED = "branch_switched"
    INTERVAL_TICK = "interval_tick"
    CONFIG_CHANGED = "config_changed"
    MANUAL_COMMIT = "manual_commit"

    @property
    def is_file_event(self) -> bool:
        return self in (
            EventKind.FILE_CHANGED,
            EventKind.FILE_CREATED,
            EventKind.FILE_DELETED,
        )


@dataclass(frozen=True)
class Event:
    kind: EventKind
    path: Optional[str] = None
    created_at: float = field(default_factory=time.time)
