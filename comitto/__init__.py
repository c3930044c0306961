"""comitto - watch a git working tree and commit automatically with AI messages."""

from importlib import import_module
from typing import TYPE_CHECKING

__version__ = "0.1.0"

# Public API (lazy-exported so importing the package starts nothing)
__all__ = [
    # Config
    "Config", "load_config",
    # Git
    "GitRepo",
    # Engine
    "ChangeTracker", "MessageGenerator", "CommitPipeline", "AttemptResult",
    "Orchestrator", "CommandSurface", "should_fire",
    # Exceptions
    "ComittoError", "GitError", "GenerationError", "NothingToCommitError",
]


def __getattr__(name: str):
    """Lazy attribute loader so heavy modules (watchdog, openai) load on use."""
    mapping = {
        "Config": ("comitto.config", "Config"),
        "load_config": ("comitto.config", "load_config"),
        "GitRepo": ("comitto.git", "GitRepo"),
        "ChangeTracker": ("comitto.tracker", "ChangeTracker"),
        "MessageGenerator": ("comitto.message", "MessageGenerator"),
        "CommitPipeline": ("comitto.pipeline", "CommitPipeline"),
        "AttemptResult": ("comitto.pipeline", "AttemptResult"),
        "Orchestrator": ("comitto.scheduler", "Orchestrator"),
        "CommandSurface": ("comitto.commands", "CommandSurface"),
        "should_fire": ("comitto.triggers", "should_fire"),
        "ComittoError": ("comitto.exceptions", "ComittoError"),
        "GitError": ("comitto.exceptions", "GitError"),
        "GenerationError": ("comitto.exceptions", "GenerationError"),
        "NothingToCommitError": ("comitto.exceptions", "NothingToCommitError"),
    }
    if name in mapping:
        mod_name, attr = mapping[name]
        mod = import_module(mod_name)
        value = getattr(mod, attr)
        globals()[name] = value  # cache for future access
        return value
    raise AttributeError(f"module 'comitto' has no attribute {name!r}")


if TYPE_CHECKING:
    from .config import Config, load_config
    from .git import GitRepo
    from .tracker import ChangeTracker
    from .message import MessageGenerator
    from .pipeline import CommitPipeline, AttemptResult
    from .scheduler import Orchestrator
    from .commands import CommandSurface
    from .triggers import should_fire
    from .exceptions import (
        ComittoError,
        GitError,
        GenerationError,
        NothingToCommitError,
    )
