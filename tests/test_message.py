import asyncio
import re

import httpx
import pytest

from comitto.config import Config, GitSettings
from comitto.exceptions import GenerationError
from comitto.message import (
    DIFF_EXCERPT_LIMIT,
    MAX_MESSAGE_LENGTH,
    MessageGenerator,
    build_prompt,
    build_status_digest,
    fallback_message,
    postprocess_message,
)
from comitto.providers import BaseDriver

MIXED_STATUS = " M src/app.py\n?? notes.txt\nD  old.txt\n"


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


def _generate(reply, status=MIXED_STATUS, diff="", config=None):
    config = config or Config()
    driver = StaticDriver(config, reply)
    result = asyncio.run(MessageGenerator(config, driver=driver).generate(status, diff))
    return result, driver


def test_status_digest_uses_human_tokens():
    digest = build_status_digest(" M a.py\nA  b.py\nR  c.py -> d.py\n?? e.py\n")
    assert digest.splitlines() == [
        "modified: a.py",
        "added: b.py",
        "renamed: c.py -> d.py",
        "untracked: e.py",
    ]


def test_status_digest_passes_placeholder_through():
    assert build_status_digest("(status unavailable)") == "(status unavailable)"
    assert build_status_digest("") == ""


def test_prompt_substitutes_changes_and_adds_directives():
    prompt = build_prompt("Describe:\n{changes}", "modified: a.py", language="de")
    assert "modified: a.py" in prompt
    assert "{changes}" not in prompt
    assert "German" in prompt
    assert "Conventional Commits" in prompt


def test_small_diff_is_included_large_diff_is_noted():
    small = "+print('hi')\n"
    assert small in build_prompt("{changes}", "modified: a.py", small)

    large = "+" + "x" * DIFF_EXCERPT_LIMIT
    prompt = build_prompt("{changes}", "modified: a.py", large)
    assert large not in prompt
    assert f"Only the file list was used (diff of {len(large)} characters omitted)." in prompt


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('"feat: add login"', "feat: add login"),
        ("`fix: typo`", "fix: typo"),
        ("```\nchore: bump deps\n```", "chore: bump deps"),
        ("\n\nCommit message: docs: update readme\nLonger body here", "docs: update readme"),
        ("- refactor: split module", "refactor: split module"),
        ("Here is the commit message:\nfeat: add login", "feat: add login"),
        ("Sure! Here's a suggested commit message: fix: typo", "fix: typo"),
        ("Here you go:\n\n```\nchore: bump deps\n```", "chore: bump deps"),
    ],
)
def test_postprocess_cleans_model_output(raw, expected):
    assert postprocess_message(raw) == expected


def test_postprocess_caps_length_with_ellipsis():
    long = "feat: " + "very long description " * 10
    result = postprocess_message(long)
    assert len(result) <= MAX_MESSAGE_LENGTH
    assert result.endswith("…")
    no_spaces = "x" * 200
    assert len(postprocess_message(no_spaces)) == MAX_MESSAGE_LENGTH


def test_postprocess_returns_empty_for_junk():
    assert postprocess_message("") == ""
    assert postprocess_message('  ""  ') == ""
    assert postprocess_message("```\n---\n```") == ""


def test_fallback_variants():
    assert fallback_message("?? a.py\nA  b.py") == "feat: add 2 new files"
    assert fallback_message("?? a.py") == "feat: add 1 new file"
    assert fallback_message(" M a.py\n?? b.py") == "chore: update 2 files"
    assert fallback_message("D  a.py") == "chore: remove 1 file"
    assert fallback_message(" M README.md") == "docs: update 1 file"
    assert fallback_message("") == "chore: update files"


def test_unreadable_status_gets_generic_message():
    result, driver = _generate(GenerationError("offline"), status="(status unavailable)")
    assert "(status unavailable)" in driver.prompts[0]
    assert result.text == "chore: update files"
    assert result.used_fallback


def test_fallback_is_localized():
    assert fallback_message(" M a.py\n?? b.py", "de") == "chore: 2 Dateien aktualisieren"
    assert fallback_message("?? a.py\n?? b.py", "fr") == "feat: ajouter 2 nouveaux fichiers"
    assert fallback_message("D  a.py", "es") == "chore: eliminar 1 archivo"
    # Unknown languages keep English
    assert fallback_message(" M a.py\n?? b.py", "xx") == "chore: update 2 files"


def test_fallback_styles():
    assert fallback_message("?? a.py", style="gitmoji").startswith("✨ ")
    assert fallback_message("?? a.py", style="simple") == "Add 1 new file"


def test_fallback_never_raises_on_garbage():
    for status in (None, "\x00\x01", "?" * 500, "  \n  \n"):
        message = fallback_message(status)
        assert message.strip()
        assert len(message) <= MAX_MESSAGE_LENGTH


def test_generator_uses_backend_text():
    result, driver = _generate('"feat(app): add login form"')
    assert result.text == "feat(app): add login form"
    assert not result.used_fallback
    assert "modified: src/app.py" in driver.prompts[0]


@pytest.mark.parametrize(
    "reply",
    [
        GenerationError("auth missing"),
        httpx.ConnectError("network down"),
        RuntimeError("malformed response"),
        "   ",
        "",
    ],
)
def test_generator_falls_back_on_any_failure(reply):
    result, _ = _generate(reply, status=" M a.py\n M b.py\n?? c.py")
    assert result.used_fallback
    assert result.text == "chore: update 3 files"


def test_generator_output_is_never_empty_and_bounded():
    replies = ["ok", "x" * 300, "", "\n\n", GenerationError("boom")]
    statuses = ["", " M a.py", "?? " + "deep/" * 40 + "file.py"]
    for reply in replies:
        for status in statuses:
            for diff in ("", "+" * 5000):
                result, _ = _generate(reply, status=status, diff=diff)
                assert result.text.strip()
                assert len(result.text) <= MAX_MESSAGE_LENGTH


def test_generator_fallback_respects_language():
    config = Config(git=GitSettings(commit_message_language="de"))
    result, _ = _generate(GenerationError("offline"), status=" M a.py\n?? b.py", config=config)
    assert re.fullmatch(r"chore: \d+ Dateien aktualisieren", result.text)
