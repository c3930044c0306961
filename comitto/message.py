"""Commit message generation for comitto.

The prompt is built from a status digest (one ``<status>: <path>`` line per
change), the configured template, language and style directives and, when
small enough, an excerpt of the staged diff. Whatever backend answers, the
raw text goes through the same post-processing. Any backend failure is
absorbed into a deterministic fallback message derived from the status
alone, so this stage always yields a non-empty subject of at most 72
characters.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from .config import Config, get_active_config
from .exceptions import GenerationError
from .git import STATUS_LABELS, StatusEntry, parse_porcelain
from .providers import BaseDriver, build_driver

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 72
DIFF_EXCERPT_LIMIT = 3000
ELLIPSIS = "…"
LAST_RESORT_MESSAGE = "chore: update files"

LANGUAGE_NAMES = {
    "en": "English",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
}

STYLE_DIRECTIVES = {
    "conventional": (
        "Use the Conventional Commits format "
        "(feat, fix, docs, style, refactor, test, chore)."
    ),
    "gitmoji": "Start the message with a fitting gitmoji (✨ feature, 🐛 fix, 📝 docs).",
    "angular": "Use the Angular format: type(scope): description.",
    "atom": "Start the message with an Atom-style :emoji: followed by a description.",
    "simple": "Write a short, plain descriptive message.",
}

_DOC_SUFFIXES = (".md", ".rst", ".txt", ".adoc")

_GITMOJI = {"feat": "✨", "chore": "🔧", "docs": "📝", "remove": "🔥"}
_ATOM = {"feat": ":sparkles:", "chore": ":wrench:", "docs": ":memo:", "remove": ":fire:"}

# Ordered phrase substitutions applied to the English fallback text.
FALLBACK_LEXICON: dict[str, list[tuple[str, str]]] = {
    "de": [
        (r"\badd 1 new file\b", "1 neue Datei hinzufügen"),
        (r"\badd (\d+) new files\b", r"\1 neue Dateien hinzufügen"),
        (r"\bremove 1 file\b", "1 Datei entfernen"),
        (r"\bremove (\d+) files\b", r"\1 Dateien entfernen"),
        (r"\bupdate 1 file\b", "1 Datei aktualisieren"),
        (r"\bupdate (\d+) files\b", r"\1 Dateien aktualisieren"),
        (r"\bupdate files\b", "Dateien aktualisieren"),
    ],
    "fr": [
        (r"\badd 1 new file\b", "ajouter 1 nouveau fichier"),
        (r"\badd (\d+) new files\b", r"ajouter \1 nouveaux fichiers"),
        (r"\bremove 1 file\b", "supprimer 1 fichier"),
        (r"\bremove (\d+) files\b", r"supprimer \1 fichiers"),
        (r"\bupdate 1 file\b", "mettre à jour 1 fichier"),
        (r"\bupdate (\d+) files\b", r"mettre à jour \1 fichiers"),
        (r"\bupdate files\b", "mettre à jour des fichiers"),
    ],
    "es": [
        (r"\badd 1 new file\b", "añadir 1 archivo nuevo"),
        (r"\badd (\d+) new files\b", r"añadir \1 archivos nuevos"),
        (r"\bremove 1 file\b", "eliminar 1 archivo"),
        (r"\bremove (\d+) files\b", r"eliminar \1 archivos"),
        (r"\bupdate 1 file\b", "actualizar 1 archivo"),
        (r"\bupdate (\d+) files\b", r"actualizar \1 archivos"),
        (r"\bupdate files\b", "actualizar archivos"),
    ],
}

_QUOTE_CHARS = "\"'`“”‘’«»"
_LABEL_PREFIX = re.compile(r"^(commit message|message|commit)\s*:\s*", re.IGNORECASE)
_LEAD_IN = re.compile(
    r"^(?:(?:sure|okay|ok|certainly)\b[\s,.!]*)?"
    r"(?:here(?:'s| is| are)\s+)?(?:a |an |the |your )?(?:suggested |proposed |concise )?"
    r"commit message(?:\s+for\s+[^:]*)?\s*:\s*",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class GeneratedMessage:
    """Message text plus whether the deterministic fallback produced it."""

    text: str
    used_fallback: bool = False
    reason: Optional[str] = None


# ----------------------------------------------------------------------
# Prompt building
# ----------------------------------------------------------------------
def _describe(entry: StatusEntry) -> str:
    label = STATUS_LABELS.get(entry.short_code, entry.short_code or "changed")
    if entry.orig_path:
        return f"{label}: {entry.orig_path} -> {entry.path}"
    return f"{label}: {entry.path}"


def build_status_digest(status: str) -> str:
    """Render porcelain status as one ``<status>: <path>`` line per change.

    Text that is not porcelain at all, such as the placeholder used when
    status could not be read, is passed through unchanged.
    """
    entries = parse_porcelain(status or "")
    if not entries:
        return (status or "").strip()
    return "\n".join(_describe(entry) for entry in entries)


def build_prompt(
    template: str,
    digest: str,
    diff: str = "",
    language: str = "en",
    style: str = "conventional",
) -> str:
    changes = digest or "(no file list available)"
    if "{changes}" in template:
        prompt = template.replace("{changes}", changes)
    else:
        prompt = template.rstrip() + "\n\n" + changes

    language_name = LANGUAGE_NAMES.get(language, language)
    if language_name and language_name.lower() not in prompt.lower():
        prompt += f"\nWrite the commit message in {language_name}."

    directive = STYLE_DIRECTIVES.get(style)
    if directive and style not in prompt.lower():
        prompt += "\n" + directive

    if diff and diff.strip():
        if len(diff) <= DIFF_EXCERPT_LIMIT:
            prompt += "\n\nHere is an excerpt of the staged changes:\n\n" + diff
        else:
            prompt += (
                "\n\nOnly the file list was used "
                f"(diff of {len(diff)} characters omitted)."
            )
    return prompt


# ----------------------------------------------------------------------
# Post-processing
# ----------------------------------------------------------------------
def _strip_quotes(text: str) -> str:
    previous = None
    while text != previous:
        previous = text
        text = text.strip()
        if len(text) >= 2 and text[0] in _QUOTE_CHARS and text[-1] in _QUOTE_CHARS:
            text = text[1:-1]
    return text.strip().strip(_QUOTE_CHARS).strip()


def _is_trivial(line: str) -> bool:
    stripped = line.strip()
    if not stripped or stripped.startswith("```"):
        return True
    return not any(ch.isalnum() for ch in stripped)


def enforce_length(message: str, max_len: int = MAX_MESSAGE_LENGTH) -> str:
    """Cut ``message`` to ``max_len`` characters, ending with an ellipsis."""
    if len(message) <= max_len:
        return message
    # Prefer a word boundary unless it throws away too much
    cutoff = message.rfind(" ", 0, max_len - 1)
    if cutoff == -1 or cutoff < max_len * 0.6:
        cutoff = max_len - 1
    return message[:cutoff].rstrip() + ELLIPSIS


def postprocess_message(raw: str, max_len: int = MAX_MESSAGE_LENGTH) -> str:
    """Trim, unquote, collapse to the first real line and cap the length.

    Returns an empty string when nothing usable remains.
    """
    if not raw:
        return ""
    text = _strip_quotes(raw)
    for line in text.splitlines():
        if _is_trivial(line):
            continue
        candidate = line.strip().lstrip("-*• ").strip()
        candidate = _LEAD_IN.sub("", candidate)
        candidate = _LABEL_PREFIX.sub("", candidate)
        candidate = _strip_quotes(candidate)
        candidate = re.sub(r"\s+", " ", candidate)
        # A line ending in a colon introduces the message on the next line
        if _is_trivial(candidate) or candidate.endswith(":"):
            continue
        return enforce_length(candidate, max_len)
    return ""


# ----------------------------------------------------------------------
# Fallback
# ----------------------------------------------------------------------
def _localize(message: str, language: str) -> str:
    for pattern, replacement in FALLBACK_LEXICON.get(language, []):
        message, count = re.subn(pattern, replacement, message)
        if count:
            break
    return message


def _decorate(kind: str, ctype: str, description: str, style: str) -> str:
    if style == "gitmoji":
        return f"{_GITMOJI[kind]} {description}"
    if style == "atom":
        return f"{_ATOM[kind]} {description}"
    if style == "simple":
        return description[:1].upper() + description[1:]
    return f"{ctype}: {description}"


def fallback_message(
    status: str, language: str = "en", style: str = "conventional"
) -> str:
    """Synthesize a message from porcelain status alone.

    Never raises: it is the terminal safety net for message generation.
    """
    try:
        entries = parse_porcelain(status or "")
        count = len(entries)
        noun = "file" if count == 1 else "files"
        if not entries:
            kind, ctype, desc = "chore", "chore", "update files"
        elif all(e.short_code in ("A", "??") for e in entries):
            new_noun = "new file" if count == 1 else "new files"
            kind, ctype, desc = "feat", "feat", f"add {count} {new_noun}"
        elif all(e.short_code == "D" for e in entries):
            kind, ctype, desc = "remove", "chore", f"remove {count} {noun}"
        elif all(
            PurePosixPath(e.path).suffix.lower() in _DOC_SUFFIXES for e in entries
        ):
            kind, ctype, desc = "docs", "docs", f"update {count} {noun}"
        else:
            kind, ctype, desc = "chore", "chore", f"update {count} {noun}"
        desc = _localize(desc, language)
        message = enforce_length(_decorate(kind, ctype, desc, style))
        return message if message.strip() else LAST_RESORT_MESSAGE
    except Exception:  # noqa: BLE001 - the fallback must never raise
        logger.exception("Fallback message synthesis failed")
        return LAST_RESORT_MESSAGE


# ----------------------------------------------------------------------
# Orchestration
# ----------------------------------------------------------------------
class MessageGenerator:
    """Builds the prompt, calls exactly one backend and post-processes."""

    def __init__(
        self,
        config: Optional[Config] = None,
        driver: Optional[BaseDriver] = None,
        debug: bool = False,
    ) -> None:
        self.config = config or get_active_config()
        self._driver = driver
        self.debug = debug

    @property
    def language(self) -> str:
        return self.config.git.commit_message_language

    @property
    def style(self) -> str:
        return self.config.git.commit_message_style

    def build_prompt(self, status: str, diff: str) -> str:
        return build_prompt(
            self.config.prompt_template,
            build_status_digest(status),
            diff,
            self.language,
            self.style,
        )

    def _get_driver(self) -> BaseDriver:
        if self._driver is None:
            self._driver = build_driver(self.config, debug=self.debug)
        return self._driver

    async def generate(self, status: str, diff: str = "") -> GeneratedMessage:
        prompt = self.build_prompt(status, diff)
        try:
            driver = self._get_driver()
            logger.debug(
                "Requesting commit message from %s (prompt %d chars)",
                driver.name,
                len(prompt),
            )
            raw = await driver.generate(prompt)
            message = postprocess_message(raw)
            if not message:
                raise GenerationError("Backend returned no usable text")
            return GeneratedMessage(message)
        except Exception as exc:  # noqa: BLE001 - every failure degrades to the fallback
            reason = str(exc) or exc.__class__.__name__
            logger.warning("Message generation failed, using fallback: %s", reason)
            return GeneratedMessage(
                fallback_message(status, self.language, self.style),
                used_fallback=True,
                reason=reason,
            )
