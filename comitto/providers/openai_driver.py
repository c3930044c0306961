from __future__ import annotations

import time
from typing import Any, Optional

import openai

from ..config import Config
from ..exceptions import GenerationError
from .base import MAX_OUTPUT_TOKENS, SYSTEM_PROMPT, TEMPERATURE, BaseDriver


class OpenAIDriver(BaseDriver):
    """Driver for OpenAI / OpenAI-compatible chat completions.

    The SDK client is created lazily so a missing key surfaces as a
    ``GenerationError`` on first use instead of at construction; tests pass
    their own ``client``.
    """

    name = "openai"

    def __init__(
        self,
        config: Config,
        debug: bool = False,
        client: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(config, debug, **kwargs)
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            api_key = self.config.resolve_api_key(self.name)
            if not api_key:
                raise GenerationError(
                    "OpenAI API key not configured "
                    f"(set {self.settings.api_key_env or 'OPENAI_API_KEY'})"
                )
            self._client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=self.settings.endpoint or None,
                timeout=self._request_timeout,
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        client = self._get_client()
        started = time.perf_counter()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=TEMPERATURE,
                max_tokens=MAX_OUTPUT_TOKENS,
            )
        except openai.OpenAIError as e:
            raise GenerationError(f"OpenAI client error: {e}") from e
        try:
            choice0 = resp.choices[0]
        except (AttributeError, IndexError, TypeError):
            raise GenerationError("Missing choices in OpenAI response") from None

        # Content may be a plain string or a list of fragments
        raw_msg = getattr(choice0, "message", None)
        msg_content = getattr(raw_msg, "content", "") if raw_msg is not None else ""
        if isinstance(msg_content, list):
            fragments: list[str] = []
            for part in msg_content:
                if isinstance(part, dict):
                    fragments.append(str(part.get("text") or part.get("content") or ""))
                else:
                    fragments.append(str(getattr(part, "text", "") or ""))
            content = "".join(fragments)
        else:
            content = msg_content or ""
        if not content.strip():
            raise GenerationError("Empty OpenAI response")
        self._log_call(started, content)
        return content
