"""Configuration management for comitto.

Values are layered: built-in defaults, the persisted JSON file under
``<repo>/.comitto/config.json``, environment variables and finally explicit
overrides (CLI flags). Every layer passes through the ``sanitize_*`` helpers so
that invalid input degrades to the default instead of to zero or ``None``.
The core only ever reads configuration; it never writes it back.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".comitto"
CONFIG_FILE_NAME = "config.json"

DEFAULT_MODELS = {
    "ollama": {
        "model": "granite3.3:2b",
        "endpoint": "http://localhost:11434/api/generate",
        "api_key_env": "",
    },
    "openai": {
        "model": "gpt-4.1-mini",
        "endpoint": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
    },
    "anthropic": {
        "model": "claude-3-haiku-20240307",
        "endpoint": "https://api.anthropic.com",
        "api_key_env": "ANTHROPIC_API_KEY",
    },
}

DEFAULT_PROVIDER = "openai"

DEFAULT_PROMPT_TEMPLATE = (
    "Generate a meaningful commit message for the following changes.\n\n"
    "Keep it under 72 characters and describe what changed, not how.\n"
    "Here are the changes:\n\n{changes}"
)

STAGE_MODES = ("all", "specific", "prompt")
COMMIT_STYLES = ("conventional", "gitmoji", "simple", "angular", "atom")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class TriggerRules:
    """When enough change has accumulated to attempt a commit."""

    on_save: bool = True
    on_interval: bool = False
    on_branch_switch: bool = False
    min_change_count: int = 10
    file_count_threshold: int = 3
    time_threshold_minutes: int = 30
    interval_minutes: int = 15
    file_patterns: tuple[str, ...] = ("**/*",)
    specific_files: tuple[str, ...] = ()
    # Rate limiter toggle; True reproduces the always-required time window.
    enforce_time_threshold: bool = True


@dataclass(frozen=True)
class GitSettings:
    """How staging, branching, committing and pushing behave."""

    stage_mode: str = "all"
    specific_staging_patterns: tuple[str, ...] = ()
    branch: str = ""
    auto_push: bool = False
    push_options: str = ""
    push_retry_count: int = 3
    pull_before_push: bool = True
    use_gitignore: bool = True
    commit_message_style: str = "conventional"
    commit_message_language: str = "en"
    max_commit_attempts: int = 3
    repository_path: str = ""


@dataclass(frozen=True)
class ProviderSettings:
    model: str
    endpoint: str
    api_key_env: str = ""


@dataclass(frozen=True)
class NotificationSettings:
    show_notifications: bool = True
    on_commit: bool = True
    on_push: bool = True
    on_error: bool = True
    on_trigger_fired: bool = False


def _default_providers() -> Dict[str, ProviderSettings]:
    return {
        name: ProviderSettings(
            model=meta["model"],
            endpoint=meta["endpoint"],
            api_key_env=meta["api_key_env"],
        )
        for name, meta in DEFAULT_MODELS.items()
    }


@dataclass
class Config:
    """Runtime configuration snapshot for comitto."""

    provider: str = DEFAULT_PROVIDER
    providers: Dict[str, ProviderSettings] = field(default_factory=_default_providers)
    trigger_rules: TriggerRules = field(default_factory=TriggerRules)
    git: GitSettings = field(default_factory=GitSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    auto_commit_enabled: bool = False
    request_timeout: float = 60.0
    health_check_seconds: int = 60
    reconcile_minutes: int = 5
    git_repo_path: str = "."

    def provider_settings(self, provider: Optional[str] = None) -> ProviderSettings:
        name = provider or self.provider
        settings = self.providers.get(name)
        if settings is not None:
            return settings
        meta = DEFAULT_MODELS.get(name)
        if meta is None:
            return ProviderSettings(model="", endpoint="")
        return ProviderSettings(
            model=meta["model"],
            endpoint=meta["endpoint"],
            api_key_env=meta["api_key_env"],
        )

    def resolve_api_key(self, provider: Optional[str] = None) -> Optional[str]:
        """Return the API key from the provider's environment variable."""
        env_name = self.provider_settings(provider).api_key_env
        if not env_name:
            return None
        return os.environ.get(env_name) or None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ----------------------------------------------------------------------
# Sanitization
# ----------------------------------------------------------------------
def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    """Return the first present key; accepts snake_case and camelCase."""
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _to_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
    return fallback


def _to_positive_int(value: Any, fallback: int, minimum: int = 1) -> int:
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return fallback
    if number < minimum:
        return fallback
    return number


def _to_str(value: Any, fallback: str, trim: bool = True) -> str:
    if not isinstance(value, str):
        return fallback
    return value.strip() if trim else value


def _to_str_tuple(value: Any, fallback: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return tuple(fallback)
    cleaned = tuple(
        item.strip() for item in value if isinstance(item, str) and item.strip()
    )
    if not cleaned and fallback:
        return tuple(fallback)
    return cleaned


def sanitize_trigger_rules(raw: Optional[Mapping[str, Any]] = None) -> TriggerRules:
    raw = raw or {}
    d = TriggerRules()
    return TriggerRules(
        on_save=_to_bool(_pick(raw, "on_save", "onSave"), d.on_save),
        on_interval=_to_bool(_pick(raw, "on_interval", "onInterval"), d.on_interval),
        on_branch_switch=_to_bool(
            _pick(raw, "on_branch_switch", "onBranchSwitch"), d.on_branch_switch
        ),
        min_change_count=_to_positive_int(
            _pick(raw, "min_change_count", "minChangeCount"), d.min_change_count
        ),
        file_count_threshold=_to_positive_int(
            _pick(raw, "file_count_threshold", "fileCountThreshold"),
            d.file_count_threshold,
        ),
        time_threshold_minutes=_to_positive_int(
            _pick(raw, "time_threshold_minutes", "timeThresholdMinutes"),
            d.time_threshold_minutes,
        ),
        interval_minutes=_to_positive_int(
            _pick(raw, "interval_minutes", "intervalMinutes"), d.interval_minutes
        ),
        file_patterns=_to_str_tuple(
            _pick(raw, "file_patterns", "filePatterns"), d.file_patterns
        ),
        specific_files=_to_str_tuple(
            _pick(raw, "specific_files", "specificFiles"), d.specific_files
        ),
        enforce_time_threshold=_to_bool(
            _pick(raw, "enforce_time_threshold", "enforceTimeThreshold"),
            d.enforce_time_threshold,
        ),
    )


def sanitize_git_settings(raw: Optional[Mapping[str, Any]] = None) -> GitSettings:
    raw = raw or {}
    d = GitSettings()
    stage_mode = _pick(raw, "stage_mode", "stageMode")
    if stage_mode == "ask":
        stage_mode = "prompt"
    style = _pick(raw, "commit_message_style", "commitMessageStyle")
    language = _to_str(
        _pick(raw, "commit_message_language", "commitMessageLanguage"),
        d.commit_message_language,
    )
    return GitSettings(
        stage_mode=stage_mode if stage_mode in STAGE_MODES else d.stage_mode,
        specific_staging_patterns=_to_str_tuple(
            _pick(raw, "specific_staging_patterns", "specificStagingPatterns"),
            d.specific_staging_patterns,
        ),
        branch=_to_str(_pick(raw, "branch"), d.branch),
        auto_push=_to_bool(_pick(raw, "auto_push", "autoPush"), d.auto_push),
        push_options=_to_str(
            _pick(raw, "push_options", "pushOptions"), d.push_options, trim=False
        ),
        push_retry_count=_to_positive_int(
            _pick(raw, "push_retry_count", "pushRetryCount"), d.push_retry_count
        ),
        pull_before_push=_to_bool(
            _pick(raw, "pull_before_push", "pullBeforePush"), d.pull_before_push
        ),
        use_gitignore=_to_bool(
            _pick(raw, "use_gitignore", "useGitignore"), d.use_gitignore
        ),
        commit_message_style=style if style in COMMIT_STYLES else d.commit_message_style,
        commit_message_language=(language or d.commit_message_language).lower(),
        max_commit_attempts=_to_positive_int(
            _pick(raw, "max_commit_attempts", "maxCommitAttempts"),
            d.max_commit_attempts,
        ),
        repository_path=_to_str(
            _pick(raw, "repository_path", "repositoryPath"), d.repository_path
        ),
    )


def sanitize_notifications(
    raw: Optional[Mapping[str, Any]] = None,
) -> NotificationSettings:
    raw = raw or {}
    d = NotificationSettings()
    return NotificationSettings(
        show_notifications=_to_bool(
            _pick(raw, "show_notifications", "showNotifications"),
            d.show_notifications,
        ),
        on_commit=_to_bool(_pick(raw, "on_commit", "onCommit"), d.on_commit),
        on_push=_to_bool(_pick(raw, "on_push", "onPush"), d.on_push),
        on_error=_to_bool(_pick(raw, "on_error", "onError"), d.on_error),
        on_trigger_fired=_to_bool(
            _pick(raw, "on_trigger_fired", "onTriggerFired"), d.on_trigger_fired
        ),
    )


def sanitize_provider(value: Any) -> str:
    # Local import: the registry lives with the drivers.
    from .providers import available_drivers

    return value if value in available_drivers() else DEFAULT_PROVIDER


def sanitize_providers(
    raw: Optional[Mapping[str, Any]] = None,
) -> Dict[str, ProviderSettings]:
    providers = _default_providers()
    for name, entry in (raw or {}).items():
        if not isinstance(entry, Mapping):
            continue
        base = providers.get(name) or ProviderSettings(model="", endpoint="")
        providers[name] = ProviderSettings(
            model=_to_str(entry.get("model"), base.model) or base.model,
            endpoint=_to_str(entry.get("endpoint"), base.endpoint) or base.endpoint,
            api_key_env=_to_str(
                _pick(entry, "api_key_env", "apiKeyEnv"), base.api_key_env
            ),
        )
    return providers


def sanitize_prompt_template(value: Any) -> str:
    result = _to_str(value, DEFAULT_PROMPT_TEMPLATE, trim=False)
    return result if result.strip() else DEFAULT_PROMPT_TEMPLATE


def config_from_mapping(
    data: Mapping[str, Any], repo_root: Optional[Path] = None
) -> Config:
    """Build a sanitized Config from a raw mapping (file contents)."""
    root = _ensure_path(repo_root)
    git = sanitize_git_settings(_pick(data, "git", "gitSettings") or {})
    repo_path = git.repository_path or str(root)
    return Config(
        provider=sanitize_provider(_pick(data, "provider", "aiProvider")),
        providers=sanitize_providers(data.get("providers") or {}),
        trigger_rules=sanitize_trigger_rules(
            _pick(data, "trigger_rules", "triggerRules") or {}
        ),
        git=git,
        notifications=sanitize_notifications(data.get("notifications") or {}),
        prompt_template=sanitize_prompt_template(
            _pick(data, "prompt_template", "promptTemplate")
        ),
        auto_commit_enabled=_to_bool(
            _pick(data, "auto_commit_enabled", "autoCommitEnabled"), False
        ),
        request_timeout=float(
            _to_positive_int(_pick(data, "request_timeout", "requestTimeout"), 60)
        ),
        health_check_seconds=_to_positive_int(
            _pick(data, "health_check_seconds", "healthCheckSeconds"), 60
        ),
        reconcile_minutes=_to_positive_int(
            _pick(data, "reconcile_minutes", "reconcileMinutes"), 5
        ),
        git_repo_path=_resolve_repo_path(repo_path, root),
    )


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------
_CONFIG_STATE: Dict[str, Optional[Config]] = {"active": None}


def _ensure_path(path_like: Optional[Path]) -> Path:
    if path_like is None:
        return Path.cwd().resolve(strict=False)
    return Path(path_like).expanduser().resolve(strict=False)


def _config_file(repo_root: Optional[Path] = None) -> Path:
    return _ensure_path(repo_root) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def _resolve_repo_path(raw: str, root: Path) -> str:
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    return str(candidate.resolve(strict=False))


def load_persisted_settings(repo_root: Optional[Path] = None) -> Dict[str, Any]:
    """Return the raw persisted mapping, or an empty dict.

    A malformed file is logged and ignored rather than aborting startup.
    """
    cfg_path = _config_file(repo_root)
    if not cfg_path.exists():
        return {}
    try:
        data = json.loads(cfg_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", cfg_path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level is not an object", cfg_path)
        return {}
    return data


def load_config(
    *,
    repo_root: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Config:
    """Build configuration from config file, environment and overrides."""

    overrides = dict(overrides or {})
    root = _ensure_path(repo_root)
    config = config_from_mapping(load_persisted_settings(root), root)

    provider_override = overrides.get("provider") or os.environ.get("COMITTO_PROVIDER")
    if provider_override:
        config.provider = sanitize_provider(provider_override)

    model = overrides.get("model") or os.environ.get("COMITTO_MODEL")
    endpoint = overrides.get("endpoint") or os.environ.get("COMITTO_ENDPOINT")
    if model or endpoint:
        current = config.provider_settings()
        config.providers = dict(config.providers)
        config.providers[config.provider] = replace(
            current,
            model=model or current.model,
            endpoint=endpoint or current.endpoint,
        )

    repo_override = overrides.get("repo_path") or os.environ.get("COMITTO_REPO_PATH")
    if repo_override:
        config.git_repo_path = _resolve_repo_path(str(repo_override), root)

    auto_push_raw = overrides.get("auto_push")
    if auto_push_raw is None:
        auto_push_raw = os.environ.get("COMITTO_AUTO_PUSH")
    language = overrides.get("language") or os.environ.get("COMITTO_LANGUAGE")
    if auto_push_raw is not None or language:
        config.git = replace(
            config.git,
            auto_push=_to_bool(auto_push_raw, config.git.auto_push),
            commit_message_language=(
                str(language).strip().lower()
                if language
                else config.git.commit_message_language
            ),
        )

    timeout_raw = overrides.get("request_timeout") or os.environ.get(
        "COMITTO_REQUEST_TIMEOUT"
    )
    if timeout_raw:
        try:
            timeout = float(timeout_raw)
        except ValueError:
            timeout = 0.0
        if timeout > 0:
            config.request_timeout = timeout

    set_active_config(config)
    return config


def set_active_config(config: Config) -> None:
    _CONFIG_STATE["active"] = config


def get_active_config() -> Config:
    active = _CONFIG_STATE.get("active")
    if active is None:
        return load_config()
    return active


def clear_active_config() -> None:
    _CONFIG_STATE["active"] = None


def describe_provider(provider: str) -> str:
    meta = DEFAULT_MODELS.get(provider)
    if not meta:
        return provider
    return f"{provider} (default model: {meta['model']})"
