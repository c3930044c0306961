import inspect
import subprocess
from collections.abc import Generator
from pathlib import Path

import pytest

from comitto.git import GitRepo

_ENV_VARS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "COMITTO_PROVIDER",
    "COMITTO_MODEL",
    "COMITTO_ENDPOINT",
    "COMITTO_REPO_PATH",
    "COMITTO_AUTO_PUSH",
    "COMITTO_LANGUAGE",
    "COMITTO_REQUEST_TIMEOUT",
)


@pytest.fixture(autouse=True)
def reset_config(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Default to OpenAI with a fake key; no test ever reaches the network
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.chdir(tmp_path)

    from comitto.config import clear_active_config

    clear_active_config()
    yield
    clear_active_config()


class FakeGitRepo(GitRepo):
    """GitRepo whose ``run`` replays scripted outcomes instead of spawning git.

    ``script(prefix, *outcomes)`` answers every command line starting with
    ``prefix``; outcomes are consumed in order and the last one repeats. An
    outcome may be a string, an exception instance or a (possibly async)
    callable.
    """

    DEFAULTS = {
        "rev-parse --is-inside-work-tree": "true",
        "rev-parse --abbrev-ref HEAD": "main",
        "branch --list": "main",
    }

    def __init__(self, repo_path: Path) -> None:
        super().__init__(repo_path, lock_heal_delay=0)
        self.calls: list[list[str]] = []
        self._scripts: list[tuple[str, list]] = []

    def script(self, prefix: str, *outcomes) -> "FakeGitRepo":
        self._scripts.insert(0, (prefix, list(outcomes)))
        return self

    def count(self, prefix: str) -> int:
        return sum(1 for call in self.calls if " ".join(call).startswith(prefix))

    async def run(self, args, *, timeout=None):
        args = list(args)
        self.calls.append(args)
        line = " ".join(args)
        for prefix, outcomes in self._scripts:
            if line.startswith(prefix) and outcomes:
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, BaseException):
                    raise outcome
                if callable(outcome):
                    outcome = outcome()
                    if inspect.isawaitable(outcome):
                        outcome = await outcome
                return outcome
        for prefix, value in self.DEFAULTS.items():
            if line.startswith(prefix):
                return value
        return ""


@pytest.fixture
def fake_repo(tmp_path: Path) -> FakeGitRepo:
    root = tmp_path / "work"
    (root / ".git").mkdir(parents=True)
    return FakeGitRepo(root)


def _git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return completed.stdout


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A real repository with one commit on it."""
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "config", "user.email", "dev@example.com")
    _git(repo, "config", "user.name", "Dev")
    _git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("hello\n")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-q", "-m", "chore: init")
    return repo


@pytest.fixture
def git():
    return _git
