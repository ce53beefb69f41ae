"""DeepSeek LLM client used for text-only music analysis and shot expansion."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from openai import APIStatusError, OpenAI

from ..utils.prompts import load_prompt
from .base import GenerationError, RateLimitedError, ServiceConfigError, extract_json

logger = logging.getLogger(__name__)


class DeepSeekClient:
    """JSON generator backed by the OpenAI-compatible DeepSeek endpoint.

    DeepSeek cannot listen to audio, so ``audio_path`` is ignored and the
    prompt's lyrics and duration carry the analysis.
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_url: Optional[str] = None,
        model: str = "deepseek-chat",
        timeout: int = 60,
    ) -> None:
        if not api_key:
            raise ServiceConfigError("DeepSeek API key is missing; cannot call service.")
        self._client = OpenAI(api_key=api_key, base_url=api_url or "https://api.deepseek.com/v1")
        self._model = model
        self._timeout = timeout

    async def generate_json(self, prompt: str, audio_path: Optional[str] = None) -> dict:
        if audio_path:
            logger.debug("DeepSeek ignores audio input %s", audio_path)
        text = await asyncio.to_thread(self._complete, prompt)
        if not text:
            raise GenerationError("DeepSeek API response missing content.")
        payload = extract_json(text)
        if not isinstance(payload, dict):
            raise GenerationError("DeepSeek response should be a JSON object.")
        return payload

    def _complete(self, prompt: str) -> Optional[str]:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": load_prompt("system").strip()},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.6,
                response_format={"type": "json_object"},
                timeout=self._timeout,
            )
        except APIStatusError as exc:
            if exc.status_code == 429:
                raise RateLimitedError(str(exc)) from exc
            raise
        return self._extract_text(response)

    @staticmethod
    def _extract_text(response) -> str | None:
        """Extract assistant text content from OpenAI-compatible responses."""
        choices = getattr(response, "choices", None)
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return content if isinstance(content, str) else None
