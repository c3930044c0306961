from comitto.exceptions import (
    BranchError,
    ComittoError,
    CommitError,
    CommitInProgressError,
    ConfigError,
    GenerationError,
    GitError,
    LockContentionError,
    NothingToCommitError,
    OutputTooLargeError,
    PushError,
    RepoNotFoundError,
    StageError,
)


def test_exceptions_hierarchy_and_str():
    # Given one instance of every error
    errors = [
        GitError("git"),
        ConfigError("cfg"),
        GenerationError("gen"),
        NothingToCommitError("no changes to commit."),
        CommitInProgressError("busy"),
    ]

    # Then they all share the root and keep their message
    for error in errors:
        assert isinstance(error, ComittoError)
    assert str(errors[0]) == "git"
    assert str(errors[3]) == "no changes to commit."


def test_git_failures_are_git_errors():
    for cls in (
        RepoNotFoundError,
        OutputTooLargeError,
        LockContentionError,
        StageError,
        CommitError,
        BranchError,
        PushError,
    ):
        assert issubclass(cls, GitError)
    assert not issubclass(NothingToCommitError, GitError)


def test_git_error_carries_diagnostics():
    error = PushError(
        "Git command failed: push origin main",
        ["push", "origin", "main"],
        "/repo",
        "! [rejected] main -> main (non-fast-forward)",
    )
    assert error.command_line == "git push origin main"
    assert error.repo_path == "/repo"
    assert "non-fast-forward" in error.stderr
    assert GitError("bare").command_line == "git"
