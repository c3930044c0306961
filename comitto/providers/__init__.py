"""Interchangeable text-generation backends and their registry."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from ..config import Config
from ..exceptions import GenerationError
from .anthropic_driver import AnthropicDriver
from .base import BaseDriver
from .ollama_driver import OllamaDriver
from .openai_driver import OpenAIDriver

DriverFactory = Callable[..., BaseDriver]

_REGISTRY: Dict[str, DriverFactory] = {
    "ollama": OllamaDriver,
    "openai": OpenAIDriver,
    "anthropic": AnthropicDriver,
}


def register_driver(name: str, factory: DriverFactory) -> None:
    """Make a new backend selectable by ``Config.provider``."""
    _REGISTRY[name] = factory


def available_drivers() -> tuple[str, ...]:
    return tuple(_REGISTRY)


def build_driver(
    config: Config, provider: Optional[str] = None, **kwargs: Any
) -> BaseDriver:
    name = provider or config.provider
    factory = _REGISTRY.get(name)
    if factory is None:
        raise GenerationError(f"Unsupported provider: {name}")
    return factory(config, **kwargs)


__all__ = [
    "AnthropicDriver",
    "BaseDriver",
    "OllamaDriver",
    "OpenAIDriver",
    "available_drivers",
    "build_driver",
    "register_driver",
]
