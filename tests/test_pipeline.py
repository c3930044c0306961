import asyncio

import httpx

from comitto.config import Config, GitSettings
from comitto.exceptions import (
    CommitError,
    GitError,
    NothingToCommitError,
    RepoNotFoundError,
)
from comitto.message import MessageGenerator
from comitto.pipeline import (
    AttemptOutcome,
    CommitPipeline,
    Step,
    StepStatus,
    TriggerKind,
)
from comitto.providers import BaseDriver
from comitto.tracker import ChangeTracker

STATUS = " M src/app.py\n?? src/new.py\n"


class StaticDriver(BaseDriver):
    name = "static"

    def __init__(self, config, reply):
        super().__init__(config)
        self.reply = reply
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.reply, BaseException):
            raise self.reply
        return self.reply


def _git_error(stderr, command="commit"):
    return GitError(f"Git command failed: {command}\n{stderr}", [command], "/work", stderr)


def _make(repo, reply="feat: add app module", tracker=None, select_files=None, **git):
    config = Config(git=GitSettings(**git))
    generator = MessageGenerator(config, driver=StaticDriver(config, reply))
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    pipeline = CommitPipeline(
        repo,
        config,
        generator=generator,
        tracker=tracker,
        select_files=select_files,
        sleep=fake_sleep,
    )
    return pipeline, delays


def _run(pipeline, trigger=TriggerKind.AUTO):
    return asyncio.run(pipeline.run(trigger))


def _tracker(*names):
    tracker = ChangeTracker()
    tracker.record_many(f"/work/{name}" for name in names)
    return tracker


def test_happy_path_commits_and_clears_tracker(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    tracker = _tracker("src/app.py", "src/new.py")
    pipeline, _ = _make(fake_repo, tracker=tracker)
    result = _run(pipeline)
    assert result.committed
    assert not result.warnings
    assert result.message == "feat: add app module"
    assert ["commit", "-m", "feat: add app module"] in fake_repo.calls
    assert fake_repo.count("add -A") == 1
    assert fake_repo.count("push") == 0
    assert result.steps[Step.PUSH] is StepStatus.SKIPPED
    assert len(tracker) == 0


def test_steps_run_in_order(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    pipeline, _ = _make(fake_repo, auto_push=True)
    _run(pipeline)
    order = [call[0] for call in fake_repo.calls]
    expected = ["rev-parse", "add", "status", "diff", "commit", "rev-parse", "push"]
    assert order == expected


def test_empty_status_on_auto_trigger_is_a_silent_noop(fake_repo):
    fake_repo.script("status --porcelain", "")
    tracker = _tracker("a.py")
    pipeline, _ = _make(fake_repo, tracker=tracker)
    result = _run(pipeline, TriggerKind.AUTO)
    assert result.outcome is AttemptOutcome.NOTHING_TO_COMMIT
    assert not result.failed
    assert fake_repo.count("commit") == 0
    assert len(tracker) == 0


def test_empty_status_on_manual_trigger_is_fatal(fake_repo):
    fake_repo.script("status --porcelain", "")
    pipeline, _ = _make(fake_repo)
    result = _run(pipeline, TriggerKind.MANUAL)
    assert result.failed
    assert result.reason == "no changes to commit."
    assert isinstance(result.error, NothingToCommitError)
    assert fake_repo.count("commit") == 0


def test_commit_succeeds_on_third_attempt(fake_repo):
    failure = _git_error("fatal: could not write object")
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("commit", failure, failure, "[main abc123] ok")
    pipeline, delays = _make(fake_repo)
    result = _run(pipeline)
    assert result.committed
    assert result.error is None
    assert fake_repo.count("commit") == 3
    assert len(delays) == 2


def test_commit_retry_exhaustion_is_fatal_and_keeps_tracker(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("commit", _git_error("fatal: disk full"))
    tracker = _tracker("src/app.py")
    pipeline, _ = _make(fake_repo, tracker=tracker, max_commit_attempts=3)
    result = _run(pipeline)
    assert result.failed
    assert isinstance(result.error, CommitError)
    assert fake_repo.count("commit") == 3
    assert len(tracker) == 1


def test_nothing_to_commit_from_git_is_a_noop(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("commit", _git_error("nothing to commit, working tree clean"))
    pipeline, _ = _make(fake_repo)
    result = _run(pipeline)
    assert result.outcome is AttemptOutcome.NOTHING_TO_COMMIT
    assert fake_repo.count("commit") == 1


def test_rejected_push_is_remediated_with_pull_and_push(fake_repo):
    rejected = _git_error(
        " ! [rejected]        main -> main (non-fast-forward)", command="push"
    )
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("push", rejected, "ok")
    pipeline, _ = _make(fake_repo, auto_push=True)
    result = _run(pipeline)
    assert result.committed
    assert result.pushed
    assert "pull & push" in result.notes
    assert not result.warnings
    assert fake_repo.count("pull") == 1
    assert fake_repo.count("push") == 2


def test_failed_remediation_is_degraded_success(fake_repo):
    rejected = _git_error("error: failed to push some refs (fetch first)", command="push")
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("push", rejected)
    fake_repo.script("pull", _git_error("CONFLICT (content)", command="pull"))
    tracker = _tracker("src/app.py")
    pipeline, _ = _make(fake_repo, tracker=tracker, auto_push=True)
    result = _run(pipeline)
    assert result.committed
    assert result.degraded
    assert not result.pushed
    assert any("pull & push" in warning for warning in result.warnings)
    assert result.steps[Step.PUSH] is StepStatus.DEGRADED
    # The commit stands and the tracker was still cleared
    assert len(tracker) == 0
    assert fake_repo.count("reset") == 0


def test_rejected_push_without_pull_before_push(fake_repo):
    rejected = _git_error("! [rejected] main -> main (non-fast-forward)", command="push")
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("push", rejected)
    pipeline, _ = _make(fake_repo, auto_push=True, pull_before_push=False)
    result = _run(pipeline)
    assert result.degraded
    assert fake_repo.count("pull") == 0


def test_transient_push_errors_back_off_exponentially(fake_repo):
    dns = _git_error("fatal: unable to access: Could not resolve host: example.com", "push")
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("push", dns, dns, "ok")
    pipeline, delays = _make(fake_repo, auto_push=True, push_retry_count=3)
    result = _run(pipeline)
    assert result.pushed
    assert delays == [2.0, 4.0]


def test_transient_push_errors_exhaust_retry_budget(fake_repo):
    timeout = _git_error("ssh: connect to host example.com port 22: Connection timed out", "push")
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("push", timeout)
    pipeline, _ = _make(fake_repo, auto_push=True, push_retry_count=2)
    result = _run(pipeline)
    assert result.committed
    assert not result.pushed
    assert fake_repo.count("push") == 2


def test_generation_failure_uses_fallback_and_still_commits(fake_repo):
    fake_repo.script("status --porcelain", " M a.py\n M b.py\n")
    pipeline, _ = _make(fake_repo, reply=httpx.ConnectError("connection refused"))
    result = _run(pipeline)
    assert result.committed
    assert result.used_fallback_message
    assert result.message == "chore: update 2 files"
    assert ["commit", "-m", "chore: update 2 files"] in fake_repo.calls
    assert result.steps[Step.MESSAGE] is StepStatus.DEGRADED


def test_missing_repository_is_fatal(fake_repo):
    fake_repo.script(
        "rev-parse --is-inside-work-tree",
        _git_error("fatal: not a git repository", "rev-parse"),
    )
    pipeline, _ = _make(fake_repo)
    result = _run(pipeline)
    assert result.failed
    assert isinstance(result.error, RepoNotFoundError)
    assert fake_repo.count("add") == 0


def test_specific_staging_falls_back_to_stage_all(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("add -- ", _git_error("fatal: pathspec did not match", "add"))
    pipeline, _ = _make(
        fake_repo, stage_mode="specific", specific_staging_patterns=("*.py", "*.md")
    )
    result = _run(pipeline)
    assert result.committed
    assert fake_repo.count("add -- ") == 2
    assert fake_repo.count("add -A") == 1
    assert result.steps[Step.STAGE] is StepStatus.DEGRADED


def test_specific_staging_continues_past_single_failures(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("add -- *.md", _git_error("fatal: pathspec '*.md' did not match", "add"))
    pipeline, _ = _make(
        fake_repo, stage_mode="specific", specific_staging_patterns=("*.md", "*.py")
    )
    result = _run(pipeline)
    assert result.committed
    assert ["add", "--", "*.py"] in fake_repo.calls
    assert fake_repo.count("add -A") == 0


def test_prompt_staging_uses_selector(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    offered = []

    async def choose(entries):
        offered.extend(entry.path for entry in entries)
        return ["src/app.py"]

    pipeline, _ = _make(fake_repo, stage_mode="prompt", select_files=choose)
    result = _run(pipeline)
    assert result.committed
    assert offered == ["src/app.py", "src/new.py"]
    assert ["add", "--", "src/app.py"] in fake_repo.calls
    assert fake_repo.count("add -A") == 0


def test_prompt_staging_selector_failure_falls_back_to_stage_all(fake_repo):
    fake_repo.script("status --porcelain", STATUS)

    async def choose(entries):
        raise EOFError

    pipeline, _ = _make(fake_repo, stage_mode="prompt", select_files=choose)
    result = _run(pipeline)
    assert result.committed
    assert fake_repo.count("add -A") == 1
    assert fake_repo.count("add -- ") == 0
    assert result.steps[Step.STAGE] is StepStatus.DEGRADED
    assert any("File selection failed: EOFError" in warning for warning in result.warnings)


def test_status_failure_uses_placeholder(fake_repo):
    fake_repo.script("status --porcelain", _git_error("fatal: index corrupt", "status"))
    pipeline, _ = _make(fake_repo)
    result = _run(pipeline)
    assert result.committed
    assert result.steps[Step.STATUS] is StepStatus.DEGRADED
    assert fake_repo.count("commit") == 1


def test_status_failure_keeps_placeholder_readable(fake_repo):
    fake_repo.script("status --porcelain", _git_error("fatal: index corrupt", "status"))
    pipeline, _ = _make(fake_repo, reply=httpx.ConnectError("connection refused"))
    result = _run(pipeline)
    prompt = pipeline.generator._get_driver().prompts[0]
    assert "(status unavailable)" in prompt
    assert "tatus unavailable)" not in prompt.replace("(status unavailable)", "")
    assert result.message == "chore: update files"
    assert ["commit", "-m", "chore: update files"] in fake_repo.calls


def test_diff_falls_back_to_names_then_placeholder(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("diff --cached", _git_error("Git output exceeded", "diff"))
    pipeline, _ = _make(fake_repo)
    result = _run(pipeline)
    assert result.committed
    assert result.steps[Step.DIFF] is StepStatus.DEGRADED
    assert fake_repo.count("diff --cached --name-status") == 1


def test_branch_reconcile_creates_missing_branch(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    pipeline, _ = _make(fake_repo, branch="auto-commits")
    result = _run(pipeline)
    assert result.committed
    assert ["checkout", "-b", "auto-commits"] in fake_repo.calls


def test_branch_reconcile_checks_out_existing_branch(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("branch --list", "main\nauto-commits")
    pipeline, _ = _make(fake_repo, branch="auto-commits")
    _run(pipeline)
    assert ["checkout", "auto-commits"] in fake_repo.calls


def test_branch_failure_is_not_fatal(fake_repo):
    fake_repo.script("status --porcelain", STATUS)
    fake_repo.script("checkout", _git_error("error: Your local changes would be overwritten", "checkout"))
    pipeline, _ = _make(fake_repo, branch="release")
    result = _run(pipeline)
    assert result.committed
    assert result.steps[Step.BRANCH] is StepStatus.DEGRADED
    assert fake_repo.count("commit") == 1
