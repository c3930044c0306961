from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ..config import Config, ProviderSettings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an assistant that writes precise git commit messages. "
    "Reply with the commit message only, no quotes and no explanation."
)
MAX_OUTPUT_TOKENS = 100
TEMPERATURE = 0.3


class BaseDriver(ABC):
    """Abstract base for one text-generation backend.

    Each driver encapsulates one provider's HTTP/client call patterns and
    turns every failure into ``GenerationError``. Prompt building and
    post-processing stay in ``MessageGenerator`` so all providers behave
    the same; adding a provider means adding a driver and registering it.
    """

    name: str = ""

    def __init__(
        self,
        config: Config,
        debug: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.debug = debug
        self.settings: ProviderSettings = config.provider_settings(self.name)
        self._request_timeout = float(config.request_timeout or 60.0)
        self._transport = transport

    @property
    def model(self) -> str:
        return self.settings.model

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._request_timeout, transport=self._transport
        )

    def _log_call(self, started: float, text: str) -> None:
        logger.debug(
            "%s/%s answered in %.1f ms (%d chars)",
            self.name,
            self.model,
            (time.perf_counter() - started) * 1000.0,
            len(text),
        )

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return raw model text for ``prompt``.

        Must raise ``GenerationError`` for missing credentials, network
        failures and malformed responses.
        """
        raise NotImplementedError
