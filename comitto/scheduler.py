"""The orchestrator: event channel, triggers, timers and single-flight.

All mutable engine state (tracked paths, last commit time, the run state
token) lives on one :class:`Orchestrator` with an explicit
:meth:`~Orchestrator.start` / :meth:`~Orchestrator.stop` lifecycle.
Filesystem events, timer ticks and manual requests all arrive as
:class:`Event` items on one ``asyncio.Queue`` drained by a single dispatch
task.

At most one pipeline runs at a time. The state token flips to ``RUNNING``
synchronously, before the pipeline task yields for the first time, and a
trigger that fires while it is held is dropped rather than queued.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pathspec

from .config import Config, get_active_config, load_config
from .events import Event, EventKind
from .exceptions import GitError
from .git import GitRepo
from .message import MessageGenerator
from .notify import Notifier, Topic
from .pipeline import (
    AttemptOutcome,
    AttemptResult,
    CommitPipeline,
    FileSelector,
    TriggerKind,
)
from .tracker import ChangeTracker, IgnorePolicy
from .triggers import evaluate
from .watcher import WorkspaceWatcher

logger = logging.getLogger(__name__)

__all__ = ["Event", "EventKind", "Orchestrator", "RunState"]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


ConfigLoader = Callable[[], Config]
WatcherFactory = Callable[["Orchestrator"], WorkspaceWatcher]
Clock = Callable[[], float]


def default_watcher_factory(orchestrator: "Orchestrator") -> WorkspaceWatcher:
    return WorkspaceWatcher(
        orchestrator.repo.repo_path,
        orchestrator.post_threadsafe,
        git_dir=orchestrator.repo.git_dir(),
    )


class Orchestrator:
    """Owns the engine state for one repository."""

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        repo: Optional[GitRepo] = None,
        generator: Optional[MessageGenerator] = None,
        notifier: Optional[Notifier] = None,
        select_files: Optional[FileSelector] = None,
        config_loader: Optional[ConfigLoader] = None,
        watcher_factory: Optional[WatcherFactory] = default_watcher_factory,
        clock: Clock = time.time,
    ) -> None:
        self.config = config or get_active_config()
        self.repo = repo or GitRepo(self.config.git_repo_path)
        self.policy = IgnorePolicy(self.repo.repo_path, self.config.git.use_gitignore)
        self.tracker = ChangeTracker(self.policy)
        self.notifier = notifier or Notifier(self.config.notifications)
        self.select_files = select_files
        self.enabled = self.config.auto_commit_enabled
        self.last_commit_time: Optional[float] = None
        self.last_result: Optional[AttemptResult] = None
        self.state = RunState.IDLE
        self.dropped_triggers = 0

        self._generator = generator
        self._config_loader = config_loader or (
            lambda: load_config(repo_root=self.repo.repo_path)
        )
        self._watcher_factory = watcher_factory
        self._clock = clock
        self._watcher: Optional[WorkspaceWatcher] = None
        self._queue: Optional["asyncio.Queue[Event]"] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._pipeline_task: Optional["asyncio.Task[AttemptResult]"] = None
        self._patterns = self._compile_patterns()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def started(self) -> bool:
        return self._queue is not None

    @property
    def busy(self) -> bool:
        return self.state is RunState.RUNNING

    async def start(self) -> None:
        if self.started:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self.policy.reload(self.config.git.use_gitignore)
        self._start_watcher()
        self._tasks["dispatch"] = asyncio.create_task(self._dispatch_loop())
        self._start_periodic("interval")
        self._start_periodic("health")
        self._start_periodic("reconcile")
        logger.info(
            "Orchestrator started for %s (auto-commit %s)",
            self.repo.repo_path,
            "enabled" if self.enabled else "disabled",
        )

    async def stop(self) -> None:
        if not self.started:
            return
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._pipeline_task is not None and not self._pipeline_task.done():
            # No global cancellation: let the running attempt finish.
            await asyncio.gather(self._pipeline_task, return_exceptions=True)
        self._queue = None
        self.tracker.clear()
        self.last_commit_time = None
        logger.info("Orchestrator stopped for %s", self.repo.repo_path)

    def _start_watcher(self) -> None:
        if self._watcher_factory is None:
            return
        try:
            self._watcher = self._watcher_factory(self)
            self._watcher.start()
        except OSError as exc:
            logger.error("Could not start watching %s: %s", self.repo.repo_path, exc)
            self.notifier.error(f"File watching failed: {exc}")

    def _start_periodic(self, name: str) -> None:
        factories = {
            "interval": self._interval_loop,
            "health": self._health_loop,
            "reconcile": self._reconcile_loop,
        }
        self._tasks[name] = asyncio.create_task(factories[name]())

    # ------------------------------------------------------------------
    # Event channel
    # ------------------------------------------------------------------
    def post(self, event: Event) -> None:
        if self._queue is None:
            logger.debug("Dropping %s: orchestrator not started", event.kind.value)
            return
        self._queue.put_nowait(event)

    def post_threadsafe(self, event: Event) -> None:
        """Hand an event over from a foreign thread (the watchdog observer)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.post, event)
        except RuntimeError:
            # Loop shut down between the check and the call
            logger.debug("Event loop closed, dropping %s", event.kind.value)

    async def _dispatch_loop(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                await self.handle_event(event)
            except Exception:  # noqa: BLE001 - one bad event must not kill dispatch
                logger.exception("Failed to handle %s event", event.kind.value)
            finally:
                queue.task_done()

    async def handle_event(self, event: Event) -> None:
        kind = event.kind
        rules = self.config.trigger_rules
        if kind.is_file_event:
            if not self.enabled:
                return
            if not event.path or not self._matches_patterns(event.path):
                return
            if self.tracker.record(event.path) and rules.on_save:
                self.maybe_fire(kind.value)
        elif kind is EventKind.BRANCH_SWITCHED:
            if rules.on_branch_switch:
                self.maybe_fire(kind.value)
        elif kind is EventKind.INTERVAL_TICK:
            self.maybe_fire(kind.value)
        elif kind is EventKind.CONFIG_CHANGED:
            self.reload_config()
        elif kind is EventKind.MANUAL_COMMIT:
            if self.busy:
                self.dropped_triggers += 1
            else:
                self._launch(TriggerKind.MANUAL)

    def _compile_patterns(self) -> pathspec.PathSpec:
        patterns = self.config.trigger_rules.file_patterns or ("**/*",)
        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def _matches_patterns(self, path: str) -> bool:
        try:
            rel = os.path.relpath(os.path.abspath(path), str(self.repo.repo_path))
        except ValueError:
            return False
        if rel.startswith(".."):
            return False
        return self._patterns.match_file(rel.replace(os.sep, "/"))

    # ------------------------------------------------------------------
    # Triggering and single-flight
    # ------------------------------------------------------------------
    def maybe_fire(self, reason: str = "") -> bool:
        """Start an automatic attempt if enabled, idle and the rules allow it."""
        if not self.enabled:
            return False
        if self.busy:
            self.dropped_triggers += 1
            logger.debug("Trigger %s dropped: a commit is already running", reason)
            return False
        signals = evaluate(
            self.tracker,
            self.config.trigger_rules,
            self.last_commit_time,
            self._clock(),
        )
        if not signals.fire:
            logger.debug("Trigger %s not fired: %s", reason, signals)
            return False
        self.notifier.info(
            f"Auto-commit triggered ({reason}, {len(self.tracker)} changed file(s))",
            Topic.TRIGGER,
        )
        self._launch(TriggerKind.AUTO)
        return True

    def _launch(self, trigger: TriggerKind) -> "asyncio.Task[AttemptResult]":
        self.state = RunState.RUNNING
        task = asyncio.create_task(self._run_pipeline(trigger))
        self._pipeline_task = task
        return task

    async def run_now(
        self, trigger: TriggerKind = TriggerKind.MANUAL
    ) -> Optional[AttemptResult]:
        """Run an attempt right away; returns None when one is already running."""
        if self.busy:
            self.dropped_triggers += 1
            logger.info("Commit already in progress, ignoring %s request", trigger.value)
            return None
        return await self._launch(trigger)

    def build_pipeline(self) -> CommitPipeline:
        return CommitPipeline(
            self.repo,
            self.config,
            generator=self._generator or MessageGenerator(self.config),
            tracker=self.tracker,
            select_files=self.select_files,
        )

    async def _run_pipeline(self, trigger: TriggerKind) -> AttemptResult:
        try:
            result = await self.build_pipeline().run(trigger)
        except Exception as exc:  # noqa: BLE001 - the state token must always be released
            logger.exception("Commit pipeline crashed in %s", self.repo.repo_path)
            result = AttemptResult(
                outcome=AttemptOutcome.FAILED,
                trigger=trigger,
                reason=f"Unexpected error: {exc}",
            )
        finally:
            self.state = RunState.IDLE
        if result.committed:
            self.last_commit_time = self._clock()
        self.last_result = result
        self._report(result)
        return result

    def _report(self, result: AttemptResult) -> None:
        if result.failed:
            self.notifier.error(f"Auto-commit failed: {result.reason}")
            return
        if result.outcome is AttemptOutcome.NOTHING_TO_COMMIT:
            logger.info("No changes to commit")
            return
        self.notifier.info(f"Committed: {result.message}", Topic.COMMIT)
        for note in result.notes:
            logger.info("Commit note: %s", note)
        if result.pushed:
            self.notifier.info("Changes pushed", Topic.PUSH)
        for warning in result.warnings:
            topic = Topic.PUSH if "push" in warning.lower() else Topic.GENERAL
            self.notifier.warning(warning, topic)

    # ------------------------------------------------------------------
    # Enablement and configuration
    # ------------------------------------------------------------------
    def set_enabled(self, enabled: bool) -> bool:
        self.enabled = bool(enabled)
        if not self.enabled:
            self.tracker.clear()
            self.last_commit_time = None
        logger.info("Auto-commit %s", "enabled" if self.enabled else "disabled")
        return self.enabled

    def toggle_enabled(self) -> bool:
        return self.set_enabled(not self.enabled)

    def reload_config(self, config: Optional[Config] = None) -> Config:
        previous_interval = self.config.trigger_rules.interval_minutes
        self.config = config or self._config_loader()
        self.policy.reload(self.config.git.use_gitignore)
        self.notifier.settings = self.config.notifications
        self._patterns = self._compile_patterns()
        if (
            self.started
            and self.config.trigger_rules.interval_minutes != previous_interval
            and "interval" in self._tasks
        ):
            self._tasks.pop("interval").cancel()
            self._start_periodic("interval")
        logger.info("Configuration reloaded for %s", self.repo.repo_path)
        return self.config

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------
    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.trigger_rules.interval_minutes * 60)
            if self.config.trigger_rules.on_interval:
                self.post(Event(EventKind.INTERVAL_TICK))

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_check_seconds)
            self.health_check()

    async def _reconcile_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.reconcile_minutes * 60)
            try:
                await self.reconcile()
            except Exception:  # noqa: BLE001 - keep reconciling on the next period
                logger.exception("Background reconciliation failed")

    def health_check(self) -> List[str]:
        """Restart a dead watcher or finished periodic tasks.

        Returns the names of everything that was restarted.
        """
        if not self.started:
            return []
        restarted: List[str] = []
        if self._watcher_factory is not None and (
            self._watcher is None or not self._watcher.is_alive()
        ):
            logger.warning("File watcher is not running, restarting it")
            if self._watcher is not None:
                self._watcher.stop()
            self._start_watcher()
            restarted.append("watcher")
        for name in ("dispatch", "interval", "reconcile"):
            task = self._tasks.get(name)
            if task is not None and not task.done():
                continue
            if task is not None and not task.cancelled() and task.exception():
                logger.warning("%s task died: %s", name, task.exception())
            if name == "dispatch":
                self._tasks[name] = asyncio.create_task(self._dispatch_loop())
            else:
                self._start_periodic(name)
            restarted.append(name)
        if restarted:
            logger.info("Health check restarted: %s", ", ".join(restarted))
        return restarted

    async def reconcile(self) -> int:
        """Record changed paths the watcher missed, then re-evaluate.

        Returns the number of newly recorded paths.
        """
        if self.busy or not self.enabled:
            return 0
        try:
            entries = await self.repo.list_changed_files()
        except GitError as exc:
            logger.warning(
                "Reconciliation status failed in %s: %s", self.repo.repo_path, exc.stderr or exc
            )
            return 0
        root = Path(self.repo.repo_path)
        added = 0
        for entry in entries:
            path = str(root / entry.path)
            if path in self.tracker or not self._matches_patterns(path):
                continue
            if self.tracker.record(path):
                added += 1
        if added:
            logger.info("Reconciliation picked up %d missed change(s)", added)
            self.maybe_fire("reconcile")
        return added

    def status(self) -> Dict[str, object]:
        return {
            "repo": str(self.repo.repo_path),
            "enabled": self.enabled,
            "state": self.state.value,
            "tracked_changes": len(self.tracker),
            "last_commit_time": self.last_commit_time,
            "provider": self.config.provider,
            "model": self.config.provider_settings().model,
            "last_outcome": self.last_result.outcome.value if self.last_result else None,
        }
