"""Thin manual entry points on top of a running orchestrator."""

from __future__ import annotations

import logging
from typing import Dict

from .exceptions import CommitInProgressError, ComittoError
from .pipeline import AttemptResult, TriggerKind
from .scheduler import Orchestrator

logger = logging.getLogger(__name__)


class CommandSurface:
    """Manual commit, enable toggle, stage-everything and status commands.

    Manual runs go through the orchestrator so they respect single-flight
    and update the last commit time like automatic ones. A fatal manual
    run is raised as its typed error so a caller can show one line.
    """

    def __init__(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator

    async def run_commit_now(self) -> AttemptResult:
        result = await self.orchestrator.run_now(TriggerKind.MANUAL)
        if result is None:
            raise CommitInProgressError("A commit is already in progress.")
        if result.failed:
            if result.error is not None:
                raise result.error
            raise ComittoError(result.reason or "Commit failed.")
        return result

    def toggle_enabled(self) -> bool:
        enabled = self.orchestrator.toggle_enabled()
        self.orchestrator.notifier.info(
            f"Auto-commit {'enabled' if enabled else 'disabled'}"
        )
        return enabled

    async def stage_all(self) -> None:
        repo = self.orchestrator.repo
        await repo.verify()
        await repo.stage_all()
        self.orchestrator.notifier.info("All changes staged")

    def status(self) -> Dict[str, object]:
        return self.orchestrator.status()
