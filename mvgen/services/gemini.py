"""Google Gemini client: audio analysis, keyframe images and Veo clips."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from google import genai
from google.genai import types
from google.genai.errors import ClientError, ServerError
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..utils.files import atomic_write, guess_mime_type, read_binary
from ..utils.prompts import load_prompt
from .base import GenerationError, RateLimitedError, ServiceConfigError, extract_json, looks_rate_limited

TEXT_MODEL = "gemini-2.5-flash"
IMAGE_MODEL = "gemini-2.5-flash-image-preview"
VIDEO_MODEL = "veo-3.0-generate-preview"
JSON_SUFFIX = "\n\nReturn the result as a single valid JSON object."

logger = logging.getLogger(__name__)


def _is_retriable(exc: BaseException) -> bool:
    """Transient errors worth another attempt: quota, 5xx and connection drops."""
    if isinstance(exc, RateLimitedError):
        return True
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    return isinstance(exc, (ConnectionError, TimeoutError))


_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    retry=retry_if_exception(_is_retriable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class GeminiClient:
    """Async wrapper around ``google-genai`` for every generation capability."""

    def __init__(
        self,
        api_key: Optional[str],
        text_model: str = TEXT_MODEL,
        image_model: str = IMAGE_MODEL,
        video_model: str = VIDEO_MODEL,
        poll_interval: float = 10.0,
        max_polls: int = 120,
    ) -> None:
        if not api_key:
            raise ServiceConfigError("GEMINI_API_KEY is not configured.")
        self._client = genai.Client(api_key=api_key)
        self._text_model = text_model
        self._image_model = image_model
        self._video_model = video_model
        self._poll_interval = poll_interval
        self._max_polls = max_polls

    async def generate_json(self, prompt: str, audio_path: Optional[str] = None) -> dict:
        """Ask the text model for JSON, attaching the audio file inline when given."""
        parts = [types.Part.from_text(text=prompt + JSON_SUFFIX)]
        if audio_path:
            audio_bytes = await asyncio.to_thread(read_binary, audio_path)
            parts.append(
                types.Part.from_bytes(data=audio_bytes, mime_type=guess_mime_type(audio_path, "audio/mpeg"))
            )
        response = await self._generate_content(
            self._text_model,
            [types.Content(role="user", parts=parts)],
            types.GenerateContentConfig(
                response_mime_type="application/json",
                system_instruction=load_prompt("system").strip(),
            ),
        )
        if not response.text:
            raise GenerationError("Gemini returned an empty response.")
        payload = extract_json(response.text)
        if not isinstance(payload, dict):
            raise GenerationError("Gemini response should be a JSON object.")
        return payload

    async def generate_image(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
    ) -> str:
        contents: list = [prompt]
        for path in reference_images:
            if Path(path).is_file():
                data = await asyncio.to_thread(read_binary, path)
                contents.append(types.Part.from_bytes(data=data, mime_type=guess_mime_type(path, "image/png")))

        response = await self._generate_content(
            self._image_model,
            contents,
            types.GenerateContentConfig(response_modalities=["IMAGE"]),
        )
        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                if part.inline_data and part.inline_data.data:
                    atomic_write(output_path, part.inline_data.data)
                    return output_path
        raise GenerationError("Gemini image response did not contain image data.")

    async def generate_video(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
        duration_sec: Optional[float] = None,
    ) -> str:
        """Animate a shot from its start keyframe, interpolating to the end keyframe when distinct."""
        if not reference_images:
            raise GenerationError("Gemini image-to-video needs a start keyframe.")
        first = reference_images[0]
        first_bytes = await asyncio.to_thread(read_binary, first)
        config = types.GenerateVideosConfig(aspect_ratio="16:9", number_of_videos=1)
        if duration_sec:
            config.duration_seconds = max(1, min(8, round(duration_sec)))
        if len(reference_images) > 1 and reference_images[1] != first:
            last_bytes = await asyncio.to_thread(read_binary, reference_images[1])
            config.last_frame = types.Image(image_bytes=last_bytes, mime_type=guess_mime_type(reference_images[1], "image/png"))

        operation = await self._submit_video(
            prompt,
            types.Image(image_bytes=first_bytes, mime_type=guess_mime_type(first, "image/png")),
            config,
        )
        operation = await self._wait_for_operation(operation)

        videos = operation.response.generated_videos if operation.response else None
        if not videos or videos[0].video is None:
            raise GenerationError("Veo operation finished without a video.")
        video = videos[0].video
        video_bytes = video.video_bytes or await self._client.aio.files.download(file=video)
        atomic_write(output_path, video_bytes)
        return output_path

    @_retry_transient
    async def _generate_content(self, model: str, contents, config: types.GenerateContentConfig):
        try:
            return await self._client.aio.models.generate_content(model=model, contents=contents, config=config)
        except ClientError as exc:
            if looks_rate_limited(exc):
                raise RateLimitedError(str(exc)) from exc
            raise

    @_retry_transient
    async def _submit_video(self, prompt: str, image: types.Image, config: types.GenerateVideosConfig):
        try:
            return await self._client.aio.models.generate_videos(
                model=self._video_model,
                prompt=prompt,
                image=image,
                config=config,
            )
        except ClientError as exc:
            if looks_rate_limited(exc):
                raise RateLimitedError(str(exc)) from exc
            raise

    async def _wait_for_operation(self, operation):
        for attempt in range(self._max_polls):
            if operation.done:
                if operation.error:
                    raise GenerationError(f"Veo operation failed: {operation.error}")
                return operation
            logger.debug("Waiting for Veo operation %s (poll %d)", operation.name, attempt + 1)
            await asyncio.sleep(self._poll_interval)
            operation = await self._client.aio.operations.get(operation)
        raise TimeoutError(f"Veo operation not finished after {self._max_polls} polls.")
