"""Command-line interface for comitto."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .commands import CommandSurface
from .config import Config, describe_provider, load_config
from .exceptions import ComittoError
from .git import GitRepo, StatusEntry, find_git_repo_root
from .notify import Notification, Severity
from .providers import available_drivers
from .scheduler import Orchestrator, default_watcher_factory

logger = logging.getLogger(__name__)

WATCH_HELP = "commands: c=commit now  t=toggle auto-commit  a=stage all  s=status  q=quit"


def _configure_logging(debug: bool, verbose: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_notification(note: Notification) -> None:
    stream = sys.stderr if note.severity is Severity.ERROR else sys.stdout
    print(f"[{note.severity.value}] {note.message}", file=stream, flush=True)


def _parse_selection(answer: str, entries: Sequence[StatusEntry]) -> List[str]:
    answer = answer.strip().lower()
    if not answer or answer in {"a", "all"}:
        return [entry.path for entry in entries]
    if answer in {"n", "none"}:
        return []
    chosen: List[str] = []
    for token in answer.replace(",", " ").split():
        if "-" in token:
            start, _, end = token.partition("-")
            numbers = range(int(start), int(end) + 1)
        else:
            numbers = range(int(token), int(token) + 1)
        for number in numbers:
            if 1 <= number <= len(entries):
                path = entries[number - 1].path
                if path not in chosen:
                    chosen.append(path)
    return chosen


async def stdin_selector(entries: Sequence[StatusEntry]) -> List[str]:
    """Numbered picker used for the ``prompt`` stage mode."""
    print("Changed files:")
    for index, entry in enumerate(entries, start=1):
        print(f"  {index:>3}. {entry.label:<10} {entry.path}")
    loop = asyncio.get_running_loop()
    answer = await loop.run_in_executor(
        None, input, "Files to stage (e.g. 1,3-5; Enter=all, n=none): "
    )
    try:
        return _parse_selection(answer, entries)
    except ValueError:
        print("Invalid selection, staging everything.")
        return [entry.path for entry in entries]


class CLI:
    """argparse front end over the command surface."""

    def __init__(self) -> None:
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="comitto",
            description="Watch a git working tree and commit changes automatically "
            "with AI-generated commit messages.",
        )
        parser.add_argument(
            "--repo",
            dest="repo_path",
            default=None,
            help="Repository to work on (default: the one containing the cwd)",
        )
        parser.add_argument(
            "--provider",
            choices=available_drivers(),
            help="Message backend: "
            + ", ".join(describe_provider(name) for name in available_drivers()),
        )
        parser.add_argument("--model", help="Model name for the selected backend")
        parser.add_argument("--endpoint", help="Endpoint URL for the selected backend")
        parser.add_argument("--language", help="Commit message language (en, de, fr, es)")
        push = parser.add_mutually_exclusive_group()
        push.add_argument(
            "--push",
            dest="auto_push",
            action="store_true",
            default=None,
            help="Push after every commit",
        )
        push.add_argument(
            "--no-push",
            dest="auto_push",
            action="store_false",
            help="Never push",
        )
        parser.add_argument("--debug", action="store_true", help="Debug logging")
        parser.add_argument("--verbose", "-v", action="store_true", help="Info logging")

        sub = parser.add_subparsers(dest="command")
        watch = sub.add_parser("watch", help="Watch the tree and commit automatically")
        watch.add_argument(
            "--paused",
            action="store_true",
            help="Start with auto-commit disabled (toggle with 't')",
        )
        sub.add_parser("commit", help="Stage, describe and commit right now")
        sub.add_parser("stage-all", help="Stage every change")
        sub.add_parser("status", help="Show repository and configuration status")
        return parser

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def _load_config(self, parsed: argparse.Namespace) -> Config:
        start = Path(parsed.repo_path).expanduser() if parsed.repo_path else None
        root = find_git_repo_root(start) or (start or Path.cwd())
        overrides: Dict[str, Any] = {
            "provider": parsed.provider,
            "model": parsed.model,
            "endpoint": parsed.endpoint,
            "language": parsed.language,
            "auto_push": parsed.auto_push,
        }
        if parsed.repo_path:
            overrides["repo_path"] = str(root)
        return load_config(
            repo_root=root,
            overrides={k: v for k, v in overrides.items() if v is not None},
        )

    def _build_surface(
        self, config: Config, parsed: argparse.Namespace, watch: bool
    ) -> CommandSurface:
        # While watching, stdin belongs to the watch command reader
        selector = stdin_selector if not watch and sys.stdin.isatty() else None
        orchestrator = Orchestrator(
            config,
            repo=GitRepo(config.git_repo_path),
            select_files=selector,
            config_loader=lambda: self._load_config(parsed),
            watcher_factory=default_watcher_factory if watch else None,
        )
        orchestrator.notifier.subscribe(_print_notification)
        return CommandSurface(orchestrator)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def _cmd_commit(self, surface: CommandSurface, parsed: argparse.Namespace) -> int:
        result = await surface.run_commit_now()
        if result.committed:
            print(f"Committed: {result.message}")
            for note in result.notes:
                print(f"  note: {note}")
            return 0
        print("Nothing to commit.")
        return 0

    async def _cmd_stage_all(self, surface: CommandSurface, parsed: argparse.Namespace) -> int:
        await surface.stage_all()
        return 0

    async def _cmd_status(self, surface: CommandSurface, parsed: argparse.Namespace) -> int:
        orchestrator = surface.orchestrator
        repo = orchestrator.repo
        await repo.verify()
        entries = await repo.list_changed_files()
        branch = await repo.current_branch()
        info = surface.status()
        config = orchestrator.config
        print(f"Repository:   {info['repo']}")
        print(f"Branch:       {branch}")
        print(f"Changes:      {len(entries)} file(s)")
        print(f"Provider:     {info['provider']} ({info['model']})")
        print(f"Stage mode:   {config.git.stage_mode}")
        print(f"Auto push:    {'on' if config.git.auto_push else 'off'}")
        print(f"Language:     {config.git.commit_message_language}")
        print(f"Auto-commit:  {'enabled' if info['enabled'] else 'disabled'}")
        return 0

    async def _cmd_watch(self, surface: CommandSurface, parsed: argparse.Namespace) -> int:
        orchestrator = surface.orchestrator
        await orchestrator.repo.verify()
        orchestrator.set_enabled(not parsed.paused)
        await orchestrator.start()
        print(f"Watching {orchestrator.repo.repo_path} (Ctrl-C to stop)")
        try:
            if sys.stdin.isatty():
                print(WATCH_HELP)
                await self._read_watch_commands(surface)
            else:
                await asyncio.Event().wait()
        finally:
            await orchestrator.stop()
        return 0

    async def _read_watch_commands(self, surface: CommandSurface) -> None:
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                # stdin closed; keep watching until interrupted
                await asyncio.Event().wait()
            command = line.strip().lower()
            if command in {"q", "quit", "exit"}:
                return
            try:
                await self._dispatch_watch_command(surface, command)
            except ComittoError as exc:
                print(f"Error: {str(exc).splitlines()[0]}", file=sys.stderr)

    async def _dispatch_watch_command(self, surface: CommandSurface, command: str) -> None:
        if command == "c":
            await self._cmd_commit(surface, argparse.Namespace())
        elif command == "t":
            surface.toggle_enabled()
        elif command == "a":
            await surface.stage_all()
        elif command == "s":
            info = surface.status()
            last = info["last_commit_time"]
            stamp = time.strftime("%H:%M:%S", time.localtime(last)) if last else "never"
            print(
                f"{info['state']}, {info['tracked_changes']} tracked change(s), "
                f"last commit {stamp}, auto-commit "
                f"{'enabled' if info['enabled'] else 'disabled'}"
            )
        elif command:
            print(WATCH_HELP)

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------
    def run(self, args: Optional[list[str]] = None) -> int:
        parsed = self.parser.parse_args(args)
        _configure_logging(parsed.debug, parsed.verbose)
        if not parsed.command:
            self.parser.print_help()
            return 2

        handler = getattr(self, "_cmd_" + parsed.command.replace("-", "_"))
        try:
            config = self._load_config(parsed)
            surface = self._build_surface(config, parsed, parsed.command == "watch")
            return asyncio.run(handler(surface, parsed))
        except ComittoError as exc:
            logger.debug("Command %s failed", parsed.command, exc_info=True)
            print(f"Error: {str(exc).splitlines()[0]}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            return 130


def main(argv: Optional[list[str]] = None) -> int:
    return CLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
