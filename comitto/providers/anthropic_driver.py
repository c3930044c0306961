from __future__ import annotations

import time

import httpx

from ..exceptions import GenerationError
from .base import MAX_OUTPUT_TOKENS, SYSTEM_PROMPT, TEMPERATURE, BaseDriver

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicDriver(BaseDriver):
    """Driver handling Anthropic API calls (messages endpoint)."""

    name = "anthropic"

    async def generate(self, prompt: str) -> str:
        api_key = self.config.resolve_api_key(self.name)
        if not api_key:
            raise GenerationError(
                "Anthropic API key not configured "
                f"(set {self.settings.api_key_env or 'ANTHROPIC_API_KEY'})"
            )
        url = self.settings.endpoint.rstrip("/") + "/v1/messages"
        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": MAX_OUTPUT_TOKENS,
            "temperature": TEMPERATURE,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
        }
        started = time.perf_counter()
        try:
            async with self._http_client() as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise GenerationError(
                f"Anthropic network error during messages request: {e}"
            ) from e
        if response.status_code >= 400:
            raise GenerationError(
                f"Anthropic error {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError("Anthropic returned invalid JSON") from e
        content = data.get("content") if isinstance(data, dict) else None
        texts = [
            chunk.get("text", "")
            for chunk in content or []
            if isinstance(chunk, dict) and chunk.get("type") == "text"
        ]
        text = "\n".join(filter(None, texts))
        if not text.strip():
            raise GenerationError("Unexpected response format from Anthropic")
        self._log_call(started, text)
        return text
