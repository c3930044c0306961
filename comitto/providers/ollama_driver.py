from __future__ import annotations

import time

import httpx

from ..exceptions import GenerationError
from .base import BaseDriver


class OllamaDriver(BaseDriver):
    """Driver for a local Ollama endpoint (``/api/generate``)."""

    name = "ollama"

    async def generate(self, prompt: str) -> str:
        url = self.settings.endpoint
        if not url:
            raise GenerationError("Ollama endpoint not configured")
        payload = {"model": self.model, "prompt": prompt, "stream": False}
        started = time.perf_counter()
        try:
            async with self._http_client() as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise GenerationError(f"Ollama network error: {e}") from e
        if response.status_code >= 400:
            raise GenerationError(
                f"Ollama error {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError("Ollama returned invalid JSON") from e
        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise GenerationError("Unexpected response format from Ollama")
        self._log_call(started, text)
        return text
