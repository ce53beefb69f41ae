"""Service protocols and shared helpers for remote generation clients."""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Protocol, Sequence


class GenerationError(RuntimeError):
    """A remote generation call failed."""


class RateLimitedError(GenerationError):
    """The provider rejected the call because of quota or rate limits; retryable."""


class ServiceConfigError(ValueError):
    """A client is missing credentials or an SDK needed for real calls."""


class TextGenerator(Protocol):
    """Protocol for JSON-producing analysis services."""

    async def generate_json(self, prompt: str, audio_path: Optional[str] = None) -> dict:
        ...


class ImageGenerator(Protocol):
    """Protocol for keyframe image synthesis."""

    async def generate_image(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
    ) -> str:
        ...


class VideoGenerator(Protocol):
    """Protocol for shot animation."""

    async def generate_video(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
        duration_sec: Optional[float] = None,
    ) -> str:
        ...


_RATE_LIMIT_MARKERS = ("429", "resource_exhausted", "rate limit", "quota", "throttl")


def looks_rate_limited(exc: BaseException) -> bool:
    """Heuristic shared by clients to tag quota errors as retryable."""
    status = getattr(exc, "status_code", None) or getattr(exc, "code", None) or getattr(exc, "status", None)
    if str(status) == "429":
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def extract_json(text: str) -> Any:
    """Decode JSON from LLM output that may be wrapped in prose or code fences."""
    cleaned = text.strip()
    fence = re.match(r"^```[a-zA-Z]*\s*(.*?)\s*```$", cleaned, re.DOTALL)
    if fence:
        cleaned = fence.group(1).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Prefer an object root, fall back to an array root.
    for opener, closer in (("{", "}"), ("[", "]")):
        start = cleaned.find(opener)
        end = cleaned.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start : end + 1])
            except json.JSONDecodeError:
                continue
    raise GenerationError(f"Response is not valid JSON: {cleaned[:200]}")
