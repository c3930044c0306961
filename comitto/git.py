"""Git operations for comitto.

Every repository read or mutation goes through :meth:`GitRepo.run`, which
spawns the ``git`` binary asynchronously, enforces an output ceiling and a
per-command timeout, and heals stale ``index.lock`` files once.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .exceptions import (
    GitError,
    LockContentionError,
    OutputTooLargeError,
    RepoNotFoundError,
)

logger = logging.getLogger(__name__)

# Output past this ceiling raises OutputTooLargeError; it is never truncated.
MAX_OUTPUT_BYTES = 50 * 1024 * 1024
DEFAULT_TIMEOUT = 120.0
NETWORK_TIMEOUT = 300.0
LOCK_HEAL_DELAY = 0.5
_READ_CHUNK = 64 * 1024

STATUS_LABELS = {
    "M": "modified",
    "A": "added",
    "D": "deleted",
    "R": "renamed",
    "C": "copied",
    "U": "unmerged",
    "??": "untracked",
}

# Characters git uses in the two porcelain v1 status columns
_PORCELAIN_CODES = frozenset(" MTADRCU?!")


def looks_like_lock_contention(text: str) -> bool:
    """Return True when git output matches a known lock-contention message."""
    lowered = (text or "").lower()
    if "index.lock" in lowered:
        return True
    if "unable to create" in lowered and "file exists" in lowered:
        return True
    return "another" in lowered and "process" in lowered and "git" in lowered


def find_git_repo_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Return the top-level Git repository directory for ``start_path``.

    Attempts ``git rev-parse --show-toplevel`` first so worktrees and
    submodules are handled correctly. Falls back to walking parent
    directories looking for a ``.git`` directory or file. Returns ``None``
    when no Git repository can be found starting from ``start_path``.
    """

    path = Path(start_path or Path.cwd()).expanduser().resolve(strict=False)
    if path.is_file():
        path = path.parent

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=path,
            capture_output=True,
            text=True,
            check=True,
        )
        top = result.stdout.strip()
        if top:
            return Path(top)
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        pass

    for candidate in (path, *path.parents):
        if (candidate / ".git").exists():
            return candidate

    return None


@dataclass(frozen=True)
class StatusEntry:
    """One line of ``git status --porcelain``."""

    code: str
    path: str
    orig_path: Optional[str] = None

    @property
    def short_code(self) -> str:
        stripped = self.code.strip()
        if stripped == "??":
            return "??"
        # Index column wins; fall back to the worktree column.
        return stripped[:1] if stripped else ""

    @property
    def label(self) -> str:
        return STATUS_LABELS.get(self.short_code, self.short_code or "changed")

    @property
    def is_deletion(self) -> bool:
        return "D" in self.code


def _unquote(path: str) -> str:
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        return path[1:-1]
    return path


def parse_porcelain(output: str) -> list[StatusEntry]:
    """Parse porcelain v1 text into :class:`StatusEntry` items."""
    entries: list[StatusEntry] = []
    for line in output.splitlines():
        if len(line) < 3 or not line.strip():
            continue
        code = line[:2]
        if not set(code) <= _PORCELAIN_CODES:
            continue
        raw_path = line[3:] if line[2] == " " else line[2:]
        raw_path = raw_path.strip()
        if not raw_path:
            continue
        orig: Optional[str] = None
        if " -> " in raw_path:
            orig, raw_path = raw_path.split(" -> ", 1)
            orig = _unquote(orig.strip())
        entries.append(StatusEntry(code=code, path=_unquote(raw_path.strip()), orig_path=orig))
    return entries


class GitRepo:
    """Runs git subcommands against one repository."""

    def __init__(
        self,
        repo_path: str | Path,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
        lock_heal_delay: float = LOCK_HEAL_DELAY,
    ) -> None:
        self.repo_path = Path(repo_path).expanduser().resolve(strict=False)
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.lock_heal_delay = lock_heal_delay

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def run(self, args: Sequence[str], *, timeout: Optional[float] = None) -> str:
        """Run ``git <args>`` and return stdout.

        On a lock-contention failure the stale ``index.lock`` is removed and
        the command retried exactly once. Locks that do not exist on disk are
        not ours to heal and surface immediately.
        """
        args = list(args)
        try:
            return await self._execute(args, timeout or self.timeout)
        except OutputTooLargeError:
            raise
        except GitError as exc:
            if not looks_like_lock_contention(exc.stderr or str(exc)):
                raise
            lock_path = self.lock_file()
            if not lock_path.exists():
                raise LockContentionError(
                    f"Git lock contention without a stale lock file: {exc}",
                    args,
                    str(self.repo_path),
                    exc.stderr,
                ) from exc
            logger.warning(
                "Removing stale lock %s and retrying: git %s",
                lock_path,
                " ".join(args),
            )
            try:
                lock_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as unlink_exc:
                raise LockContentionError(
                    f"Could not remove stale lock {lock_path}: {unlink_exc}",
                    args,
                    str(self.repo_path),
                    exc.stderr,
                ) from exc
            await asyncio.sleep(self.lock_heal_delay)
            try:
                return await self._execute(args, timeout or self.timeout)
            except OutputTooLargeError:
                raise
            except GitError as retry_exc:
                if not looks_like_lock_contention(retry_exc.stderr or str(retry_exc)):
                    raise
                raise LockContentionError(
                    f"Git command still failing after lock heal: {retry_exc}",
                    args,
                    str(self.repo_path),
                    retry_exc.stderr,
                ) from retry_exc

    async def _execute(self, args: list[str], timeout: float) -> str:
        cmd = " ".join(args)
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(self.repo_path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise GitError(
                "Git command not found. Please install Git.",
                args,
                str(self.repo_path),
            ) from exc
        except NotADirectoryError as exc:
            raise RepoNotFoundError(
                f"Repository path does not exist: {self.repo_path}",
                args,
                str(self.repo_path),
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(self._collect(proc, args), timeout)
        except asyncio.TimeoutError as exc:
            await self._kill(proc)
            logger.error("git %s timed out after %.0fs in %s", cmd, timeout, self.repo_path)
            raise GitError(
                f"Git command timed out after {timeout:.0f}s: {cmd}",
                args,
                str(self.repo_path),
            ) from exc

        out_text = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            detail = err_text or out_text.strip()
            logger.debug(
                "git %s failed (exit %s) in %s: %s",
                cmd,
                proc.returncode,
                self.repo_path,
                detail,
            )
            raise GitError(
                f"Git command failed: {cmd}\n{detail}",
                args,
                str(self.repo_path),
                detail,
            )
        return out_text.rstrip("\n")

    async def _collect(
        self, proc: asyncio.subprocess.Process, args: list[str]
    ) -> tuple[bytes, bytes]:
        assert proc.stdout is not None and proc.stderr is not None
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        chunks: list[bytes] = []
        total = 0
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_output_bytes:
                stderr_task.cancel()
                await self._kill(proc)
                logger.error(
                    "git %s produced more than %d bytes in %s",
                    " ".join(args),
                    self.max_output_bytes,
                    self.repo_path,
                )
                raise OutputTooLargeError(
                    f"Git output exceeded {self.max_output_bytes} bytes; "
                    "reduce the change set or commit manually.",
                    args,
                    str(self.repo_path),
                )
            chunks.append(chunk)
        stderr = await stderr_task
        await proc.wait()
        return b"".join(chunks), stderr

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    def git_dir(self) -> Path:
        """Return the repository's git directory without spawning git."""
        dot_git = self.repo_path / ".git"
        if dot_git.is_file():
            # Worktrees and submodules use a "gitdir: <path>" pointer file.
            content = dot_git.read_text(encoding="utf-8", errors="replace").strip()
            if content.startswith("gitdir:"):
                target = Path(content.split(":", 1)[1].strip())
                if not target.is_absolute():
                    target = self.repo_path / target
                return target.resolve(strict=False)
        return dot_git

    def lock_file(self) -> Path:
        return self.git_dir() / "index.lock"

    # ------------------------------------------------------------------
    # Repository queries
    # ------------------------------------------------------------------
    async def verify(self) -> None:
        """Raise RepoNotFoundError unless repo_path is inside a work tree."""
        try:
            inside = await self.run(["rev-parse", "--is-inside-work-tree"])
        except RepoNotFoundError:
            raise
        except GitError as exc:
            raise RepoNotFoundError(
                f"Not a Git repository: {self.repo_path}",
                exc.command,
                str(self.repo_path),
                exc.stderr,
            ) from exc
        if inside.strip() != "true":
            raise RepoNotFoundError(
                f"Not inside a Git working tree: {self.repo_path}",
                ["rev-parse", "--is-inside-work-tree"],
                str(self.repo_path),
            )

    async def status_porcelain(self) -> str:
        return await self.run(["status", "--porcelain"])

    async def list_changed_files(self) -> list[StatusEntry]:
        """Return porcelain status entries."""
        return parse_porcelain(await self.status_porcelain())

    async def staged_diff(self) -> str:
        """Get the diff of staged changes."""
        return await self.run(["diff", "--cached"])

    async def staged_name_status(self) -> str:
        """Name-only view of the staged diff, used when the full diff fails."""
        return await self.run(["diff", "--cached", "--name-status"])

    async def current_branch(self) -> str:
        return (await self.run(["rev-parse", "--abbrev-ref", "HEAD"])).strip()

    async def list_branches(self) -> list[str]:
        output = await self.run(["branch", "--list", "--format=%(refname:short)"])
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def branch_exists(self, name: str) -> bool:
        return name in await self.list_branches()

    async def head_commit(self) -> str:
        return (await self.run(["rev-parse", "--short", "HEAD"])).strip()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def stage_all(self) -> None:
        """Stage all changes (including new and deleted files)."""
        await self.run(["add", "-A"])

    async def stage_paths(self, paths: Sequence[str]) -> None:
        if paths:
            await self.run(["add", "--", *paths])

    async def stage_pattern(self, pattern: str) -> None:
        """Stage files matching one git pathspec glob."""
        await self.run(["add", "--", pattern])

    async def checkout(self, branch: str, create: bool = False) -> None:
        args = ["checkout", "-b", branch] if create else ["checkout", branch]
        await self.run(args)

    async def commit(self, message: str) -> str:
        """Create a commit and return git's summary output.

        The message travels as one argv element, so quotes inside it reach
        git verbatim without shell escaping.
        """
        return await self.run(["commit", "-m", message])

    async def push(
        self,
        remote: str = "origin",
        branch: Optional[str] = None,
        options: str = "",
    ) -> str:
        """Push ``branch`` (default: current) to ``remote``."""
        if branch is None:
            branch = await self.current_branch()
        extra = shlex.split(options) if options.strip() else []
        return await self.run(["push", *extra, remote, branch], timeout=NETWORK_TIMEOUT)

    async def pull(self, remote: str = "origin", branch: Optional[str] = None) -> str:
        if branch is None:
            branch = await self.current_branch()
        return await self.run(["pull", "--no-edit", remote, branch], timeout=NETWORK_TIMEOUT)
