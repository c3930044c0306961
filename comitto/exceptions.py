"""Exception hierarchy for comitto."""

from __future__ import annotations

from typing import Optional


class ComittoError(Exception):
    """Base exception for all comitto errors."""


class ConfigError(ComittoError):
    """Raised when configuration cannot be loaded or is unusable."""


class GitError(ComittoError):
    """A git subcommand failed.

    Carries the command, repository path and stderr so a failure can be
    diagnosed from the log alone.
    """

    def __init__(
        self,
        message: str,
        command: Optional[list[str]] = None,
        repo_path: Optional[str] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command or [])
        self.repo_path = repo_path
        self.stderr = stderr

    @property
    def command_line(self) -> str:
        return " ".join(["git", *self.command]) if self.command else "git"


class RepoNotFoundError(GitError):
    """The configured path is not inside a git working tree."""


class OutputTooLargeError(GitError):
    """git produced more output than the executor is willing to buffer."""


class LockContentionError(GitError):
    """An index.lock style failure that survived the one-shot heal."""


class StageError(GitError):
    """Staging failed; the pipeline degrades to staging everything."""


class CommitError(GitError):
    """`git commit` kept failing after all retries."""


class BranchError(GitError):
    """Branch checkout/creation failed; the commit continues on HEAD."""


class PushError(GitError):
    """Pushing failed after the commit succeeded."""


class NothingToCommitError(ComittoError):
    """There were no changes to commit on a manual run."""


class GenerationError(ComittoError):
    """An AI backend could not produce a message."""


class CommitInProgressError(ComittoError):
    """A manual run was requested while another attempt holds the token."""
