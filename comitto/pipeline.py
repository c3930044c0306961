"""Single commit attempt, driven step by step.

Each step returns an :class:`Outcome` (success, degraded or fatal) instead of
raising, and :meth:`CommitPipeline.run` threads those outcomes through the
fixed step order::

    verify -> stage -> status -> empty check -> diff -> message
           -> branch -> commit -> push

Only a missing repository, a manual run with nothing to commit and an
exhausted commit retry budget end the attempt as failed. Everything else
degrades into a warning on the returned :class:`AttemptResult`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .config import Config, get_active_config
from .exceptions import (
    BranchError,
    ComittoError,
    CommitError,
    GitError,
    NothingToCommitError,
    PushError,
    RepoNotFoundError,
    StageError,
)
from .git import GitRepo, StatusEntry
from .message import LAST_RESORT_MESSAGE, MessageGenerator, fallback_message
from .tracker import ChangeTracker

logger = logging.getLogger(__name__)

COMMIT_RETRY_DELAY = 1.0
PUSH_BACKOFF_BASE = 2.0
DEFAULT_REMOTE = "origin"
STATUS_PLACEHOLDER = "(status unavailable)"
NOTHING_TO_COMMIT_MESSAGE = "no changes to commit."

_NOTHING_TO_COMMIT_MARKERS = (
    "nothing to commit",
    "nothing added to commit",
    "no changes added to commit",
)
_REJECTED_MARKERS = (
    "non-fast-forward",
    "[rejected]",
    "updates were rejected",
    "fetch first",
)
_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "could not resolve host",
    "temporary failure in name resolution",
    "name or service not known",
    "connection reset",
    "connection refused",
    "network is unreachable",
    "early eof",
)

FileSelector = Callable[[Sequence[StatusEntry]], Awaitable[Sequence[str]]]
Sleeper = Callable[[float], Awaitable[Any]]


class TriggerKind(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class StepStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    DEGRADED = "degraded"
    FATAL = "fatal"
    SKIPPED = "skipped"


class AttemptOutcome(str, Enum):
    COMMITTED = "committed"
    NOTHING_TO_COMMIT = "nothingToCommit"
    FAILED = "failed"


class Step(str, Enum):
    VERIFY = "verify"
    STAGE = "stage"
    STATUS = "status"
    EMPTY_CHECK = "empty_check"
    DIFF = "diff"
    MESSAGE = "message"
    BRANCH = "branch"
    COMMIT = "commit"
    PUSH = "push"


@dataclass(frozen=True)
class Outcome:
    """Result of one pipeline step."""

    status: StepStatus
    value: Any = None
    reason: str = ""
    error: Optional[ComittoError] = None
    note: str = ""

    @classmethod
    def success(cls, value: Any = None, note: str = "") -> "Outcome":
        return cls(StepStatus.SUCCESS, value=value, note=note)

    @classmethod
    def degraded(
        cls,
        reason: str,
        value: Any = None,
        error: Optional[ComittoError] = None,
        note: str = "",
    ) -> "Outcome":
        return cls(StepStatus.DEGRADED, value=value, reason=reason, error=error, note=note)

    @classmethod
    def fatal(cls, reason: str, error: Optional[ComittoError] = None) -> "Outcome":
        return cls(StepStatus.FATAL, reason=reason, error=error)

    @classmethod
    def skipped(cls, note: str = "") -> "Outcome":
        return cls(StepStatus.SKIPPED, note=note)

    @property
    def is_fatal(self) -> bool:
        return self.status is StepStatus.FATAL


@dataclass
class CommitAttempt:
    """Ephemeral bookkeeping for one run; never persisted."""

    trigger: TriggerKind
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    steps: Dict[Step, StepStatus] = field(
        default_factory=lambda: {step: StepStatus.PENDING for step in Step}
    )
    stage_retries: int = 0
    commit_retries: int = 0
    push_retries: int = 0
    outcome: Optional[AttemptOutcome] = None
    warnings: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    message: str = ""
    used_fallback_message: bool = False
    pushed: bool = False

    def record(self, step: Step, outcome: Outcome) -> Outcome:
        self.steps[step] = outcome.status
        if outcome.status is StepStatus.DEGRADED:
            self.warnings.append(outcome.reason)
            logger.warning("%s step degraded: %s", step.value, outcome.reason)
        elif outcome.status is StepStatus.FATAL:
            logger.error("%s step failed: %s", step.value, outcome.reason)
        else:
            logger.debug("%s step %s", step.value, outcome.status.value)
        if outcome.note:
            self.notes.append(outcome.note)
        return outcome


@dataclass(frozen=True)
class AttemptResult:
    """What the caller learns about a finished attempt."""

    outcome: AttemptOutcome
    trigger: TriggerKind
    message: str = ""
    reason: str = ""
    error: Optional[ComittoError] = None
    warnings: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()
    pushed: bool = False
    used_fallback_message: bool = False
    steps: Dict[Step, StepStatus] = field(default_factory=dict)
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def committed(self) -> bool:
        return self.outcome is AttemptOutcome.COMMITTED

    @property
    def failed(self) -> bool:
        return self.outcome is AttemptOutcome.FAILED

    @property
    def degraded(self) -> bool:
        return self.committed and bool(self.warnings)


def _lowered(exc: BaseException) -> str:
    stderr = getattr(exc, "stderr", "") or ""
    return f"{exc}\n{stderr}".lower()


def is_nothing_to_commit(exc: BaseException) -> bool:
    text = _lowered(exc)
    return any(marker in text for marker in _NOTHING_TO_COMMIT_MARKERS)


def is_push_rejected(exc: BaseException) -> bool:
    text = _lowered(exc)
    return any(marker in text for marker in _REJECTED_MARKERS)


def is_transient_network_error(exc: BaseException) -> bool:
    text = _lowered(exc)
    return any(marker in text for marker in _TRANSIENT_MARKERS)


class CommitPipeline:
    """Drives one commit attempt against a repository.

    The pipeline does not guard against concurrent runs itself; the
    orchestrator holds the single-flight token around :meth:`run`.
    """

    def __init__(
        self,
        repo: GitRepo,
        config: Optional[Config] = None,
        *,
        generator: Optional[MessageGenerator] = None,
        tracker: Optional[ChangeTracker] = None,
        select_files: Optional[FileSelector] = None,
        commit_retry_delay: float = COMMIT_RETRY_DELAY,
        push_backoff_base: float = PUSH_BACKOFF_BASE,
        remote: str = DEFAULT_REMOTE,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.repo = repo
        self.config = config or get_active_config()
        self.generator = generator or MessageGenerator(self.config)
        self.tracker = tracker
        self.select_files = select_files
        self.commit_retry_delay = commit_retry_delay
        self.push_backoff_base = push_backoff_base
        self.remote = remote
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def run(self, trigger: TriggerKind = TriggerKind.AUTO) -> AttemptResult:
        attempt = CommitAttempt(trigger=TriggerKind(trigger))
        logger.info("Starting %s commit attempt in %s", attempt.trigger.value, self.repo.repo_path)

        verified = attempt.record(Step.VERIFY, await self._verify_repo())
        if verified.is_fatal:
            return self._finish(attempt, AttemptOutcome.FAILED, verified)

        attempt.record(Step.STAGE, await self._stage(attempt))

        status = attempt.record(Step.STATUS, await self._status()).value or ""

        empty = attempt.record(Step.EMPTY_CHECK, self._empty_check(status, attempt.trigger))
        if empty.is_fatal:
            return self._finish(attempt, AttemptOutcome.FAILED, empty)
        if empty.value:
            return self._nothing_to_commit(attempt)

        diff = attempt.record(Step.DIFF, await self._diff()).value or ""

        message = attempt.record(Step.MESSAGE, await self._message(status, diff)).value
        attempt.message = message
        attempt.used_fallback_message = attempt.steps[Step.MESSAGE] is StepStatus.DEGRADED

        attempt.record(Step.BRANCH, await self._reconcile_branch())

        committed = attempt.record(Step.COMMIT, await self._commit(attempt, message))
        if committed.is_fatal:
            return self._finish(attempt, AttemptOutcome.FAILED, committed)
        if committed.value == AttemptOutcome.NOTHING_TO_COMMIT:
            if attempt.trigger is TriggerKind.MANUAL:
                return self._finish(attempt, AttemptOutcome.FAILED, self._manual_empty())
            return self._nothing_to_commit(attempt)

        if self.tracker is not None:
            snapshot = self.tracker.snapshot_and_clear()
            logger.debug("Cleared %d tracked path(s) after commit", snapshot.count)

        if self.config.git.auto_push:
            pushed = attempt.record(Step.PUSH, await self._push(attempt))
            attempt.pushed = bool(pushed.value)
        else:
            attempt.record(Step.PUSH, Outcome.skipped())

        return self._finish(attempt, AttemptOutcome.COMMITTED)

    def _finish(
        self,
        attempt: CommitAttempt,
        outcome: AttemptOutcome,
        terminal: Optional[Outcome] = None,
    ) -> AttemptResult:
        attempt.outcome = outcome
        attempt.finished_at = time.time()
        reason = terminal.reason if terminal is not None else ""
        error = terminal.error if terminal is not None else None
        if outcome is AttemptOutcome.FAILED:
            logger.error(
                "Commit attempt failed in %s: %s", self.repo.repo_path, reason
            )
        elif outcome is AttemptOutcome.COMMITTED:
            logger.info(
                "Committed in %s: %s%s",
                self.repo.repo_path,
                attempt.message,
                " (with warnings)" if attempt.warnings else "",
            )
        return AttemptResult(
            outcome=outcome,
            trigger=attempt.trigger,
            message=attempt.message,
            reason=reason,
            error=error,
            warnings=tuple(attempt.warnings),
            notes=tuple(attempt.notes),
            pushed=attempt.pushed,
            used_fallback_message=attempt.used_fallback_message,
            steps=dict(attempt.steps),
            started_at=attempt.started_at,
            finished_at=attempt.finished_at,
        )

    def _nothing_to_commit(self, attempt: CommitAttempt) -> AttemptResult:
        if self.tracker is not None:
            self.tracker.clear()
        logger.info("Nothing to commit in %s", self.repo.repo_path)
        return self._finish(attempt, AttemptOutcome.NOTHING_TO_COMMIT)

    @staticmethod
    def _manual_empty() -> Outcome:
        return Outcome.fatal(
            NOTHING_TO_COMMIT_MESSAGE,
            NothingToCommitError(NOTHING_TO_COMMIT_MESSAGE),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    async def _verify_repo(self) -> Outcome:
        try:
            await self.repo.verify()
        except RepoNotFoundError as exc:
            return Outcome.fatal(str(exc), exc)
        except GitError as exc:
            error = RepoNotFoundError(str(exc), exc.command, exc.repo_path, exc.stderr)
            return Outcome.fatal(str(exc), error)
        return Outcome.success()

    async def _stage(self, attempt: CommitAttempt) -> Outcome:
        mode = self.config.git.stage_mode
        try:
            if mode == "specific":
                return await self._stage_specific()
            if mode == "prompt":
                return await self._stage_prompt()
            await self.repo.stage_all()
            return Outcome.success()
        except GitError as exc:
            reason = f"Staging ({mode}) failed, staged everything instead: {exc}"
            logger.warning(
                "Stage failure in %s (git %s): %s",
                self.repo.repo_path,
                exc.command_line,
                exc.stderr or exc,
            )
            attempt.stage_retries += 1
            try:
                await self.repo.stage_all()
            except GitError as fallback_exc:
                reason = f"Staging failed entirely: {fallback_exc}"
                return Outcome.degraded(
                    reason,
                    error=StageError(reason, fallback_exc.command, fallback_exc.repo_path, fallback_exc.stderr),
                )
            return Outcome.degraded(
                reason, error=StageError(reason, exc.command, exc.repo_path, exc.stderr)
            )

    async def _stage_specific(self) -> Outcome:
        patterns = self.config.git.specific_staging_patterns
        if not patterns:
            raise StageError("No staging patterns configured for specific mode")
        failures: List[str] = []
        last_error: Optional[GitError] = None
        for pattern in patterns:
            try:
                await self.repo.stage_pattern(pattern)
            except GitError as exc:
                logger.warning("Could not stage pattern %r: %s", pattern, exc.stderr or exc)
                failures.append(pattern)
                last_error = exc
        if last_error is not None and len(failures) == len(patterns):
            raise StageError(
                f"No staging pattern could be applied: {', '.join(failures)}",
                last_error.command,
                last_error.repo_path,
                last_error.stderr,
            )
        if failures:
            return Outcome.degraded(f"Skipped staging patterns: {', '.join(failures)}")
        return Outcome.success()

    async def _stage_prompt(self) -> Outcome:
        if self.select_files is None:
            await self.repo.stage_all()
            return Outcome.success(note="no file selector available, staged everything")
        entries = await self.repo.list_changed_files()
        if not entries:
            return Outcome.success()
        try:
            chosen = list(await self.select_files(entries))
        except Exception as exc:  # noqa: BLE001 - selector errors become stage errors
            reason = str(exc) or exc.__class__.__name__
            raise StageError(f"File selection failed: {reason}") from exc
        if not chosen:
            return Outcome.success(note="no files selected")
        await self.repo.stage_paths(chosen)
        return Outcome.success()

    async def _status(self) -> Outcome:
        try:
            return Outcome.success(await self.repo.status_porcelain())
        except GitError as exc:
            return Outcome.degraded(
                f"Could not read status, continuing: {exc}", value=STATUS_PLACEHOLDER
            )

    def _empty_check(self, status: str, trigger: TriggerKind) -> Outcome:
        if status.strip():
            return Outcome.success(False)
        if trigger is TriggerKind.MANUAL:
            return self._manual_empty()
        return Outcome.success(True)

    async def _diff(self) -> Outcome:
        try:
            return Outcome.success(await self.repo.staged_diff())
        except GitError as exc:
            first_error = exc
        try:
            names = await self.repo.staged_name_status()
        except GitError as exc:
            return Outcome.degraded(
                f"Could not read the staged diff: {exc}",
                value=f"(diff unavailable: {first_error.__class__.__name__})",
            )
        return Outcome.degraded(
            f"Full diff unavailable, used file names only: {first_error}", value=names
        )

    async def _message(self, status: str, diff: str) -> Outcome:
        generated = await self.generator.generate(status, diff)
        text = (generated.text or "").strip()
        if not text:
            text = fallback_message(
                status,
                self.config.git.commit_message_language,
                self.config.git.commit_message_style,
            ).strip() or LAST_RESORT_MESSAGE
            return Outcome.degraded("Generated message was empty, used fallback", value=text)
        if generated.used_fallback:
            return Outcome.degraded(
                f"Fallback commit message used: {generated.reason}", value=text
            )
        return Outcome.success(text)

    async def _reconcile_branch(self) -> Outcome:
        target = self.config.git.branch.strip()
        if not target:
            return Outcome.skipped()
        try:
            current = await self.repo.current_branch()
            if current == target:
                return Outcome.skipped()
            exists = await self.repo.branch_exists(target)
            await self.repo.checkout(target, create=not exists)
        except GitError as exc:
            reason = f"Could not switch to branch {target}, committing on current branch: {exc}"
            return Outcome.degraded(
                reason, error=BranchError(reason, exc.command, exc.repo_path, exc.stderr)
            )
        note = f"switched to {'existing' if exists else 'new'} branch {target}"
        return Outcome.success(target, note=note)

    async def _commit(self, attempt: CommitAttempt, message: str) -> Outcome:
        max_attempts = self.config.git.max_commit_attempts
        last_error: Optional[GitError] = None
        for number in range(1, max_attempts + 1):
            try:
                await self.repo.commit(message)
            except GitError as exc:
                if is_nothing_to_commit(exc):
                    return Outcome.success(AttemptOutcome.NOTHING_TO_COMMIT)
                last_error = exc
                logger.warning(
                    "Commit attempt %d/%d failed in %s: %s",
                    number,
                    max_attempts,
                    self.repo.repo_path,
                    exc.stderr or exc,
                )
                if number < max_attempts:
                    attempt.commit_retries += 1
                    await self._sleep(self.commit_retry_delay)
                continue
            return Outcome.success(AttemptOutcome.COMMITTED)

        assert last_error is not None
        reason = f"Commit failed after {max_attempts} attempts: {last_error}"
        return Outcome.fatal(
            reason,
            CommitError(reason, last_error.command, last_error.repo_path, last_error.stderr),
        )

    async def _push(self, attempt: CommitAttempt) -> Outcome:
        git = self.config.git
        try:
            branch = await self.repo.current_branch()
        except GitError as exc:
            return self._push_failed(f"Could not determine branch to push: {exc}", exc)

        for number in range(git.push_retry_count):
            try:
                await self.repo.push(self.remote, branch, git.push_options)
                return Outcome.success(True, note=f"pushed to {self.remote}/{branch}")
            except GitError as exc:
                if is_push_rejected(exc):
                    if not git.pull_before_push:
                        return self._push_failed(f"Push rejected: {exc}", exc)
                    # Exactly one remediation; its failure is final.
                    return await self._pull_and_push(branch)
                if is_transient_network_error(exc) and number + 1 < git.push_retry_count:
                    delay = self.push_backoff_base * (2 ** number)
                    attempt.push_retries += 1
                    logger.warning(
                        "Transient push failure, retrying in %.1fs: %s", delay, exc.stderr or exc
                    )
                    await self._sleep(delay)
                    continue
                return self._push_failed(f"Push failed: {exc}", exc)
        return self._push_failed("Push failed: retry budget exhausted", None)

    async def _pull_and_push(self, branch: str) -> Outcome:
        logger.info("Push rejected, trying pull & push on %s", branch)
        try:
            await self.repo.pull(self.remote, branch)
            await self.repo.push(self.remote, branch, self.config.git.push_options)
        except GitError as exc:
            return self._push_failed(f"Push failed after pull & push: {exc}", exc)
        return Outcome.success(True, note="pull & push")

    def _push_failed(self, reason: str, exc: Optional[GitError]) -> Outcome:
        if exc is not None:
            logger.warning(
                "Push failure in %s (git %s): %s",
                self.repo.repo_path,
                exc.command_line,
                exc.stderr or exc,
            )
            error = PushError(reason, exc.command, exc.repo_path, exc.stderr)
        else:
            error = PushError(reason, repo_path=str(self.repo.repo_path))
        return Outcome.degraded(reason, value=False, error=error)
