"""Aliyun Wanx (DashScope) first/last-frame video synthesis."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from http import HTTPStatus
from pathlib import Path
from typing import Any, Optional, Sequence

import requests
from dashscope import VideoSynthesis

from ..utils.files import atomic_write
from .base import GenerationError, RateLimitedError, ServiceConfigError

FIRST_LAST_TO_VIDEO_MODEL = "wanx2.1-kf2v-plus"

logger = logging.getLogger(__name__)


class AliyunVideoClient:
    """Submits a keyframe-to-video task, polls it and downloads the clip."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = FIRST_LAST_TO_VIDEO_MODEL,
        resolution: str = "720P",
        poll_interval: float = 10.0,
        max_polls: int = 120,
        timeout: int = 120,
    ) -> None:
        if not api_key:
            raise ServiceConfigError("DASHSCOPE_API_KEY is not configured.")
        self._api_key = api_key
        self._model = model
        self._resolution = resolution
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._timeout = timeout

    async def generate_video(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
        duration_sec: Optional[float] = None,
    ) -> str:
        if not reference_images:
            raise GenerationError("Wanx first/last-frame video needs at least one keyframe.")
        first = reference_images[0]
        last = reference_images[1] if len(reference_images) > 1 else first
        abandoned = threading.Event()
        try:
            return await asyncio.to_thread(self._generate, prompt, first, last, output_path, abandoned)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; it stops at its next poll.
            abandoned.set()
            raise

    def _generate(
        self,
        prompt: str,
        first: str,
        last: str,
        output_path: str,
        abandoned: Optional[threading.Event] = None,
    ) -> str:
        task = VideoSynthesis.async_call(
            model=self._model,
            prompt=prompt,
            first_frame_url=self._as_file_url(first),
            last_frame_url=self._as_file_url(last),
            resolution=self._resolution,
            prompt_extend=True,
            api_key=self._api_key,
        )
        self._ensure_ok(task, "submit")
        task_id = task.output.task_id
        logger.debug("Wanx task %s submitted", task_id)

        for attempt in range(self._max_polls):
            time.sleep(self._poll_interval)
            _check_abandoned(abandoned, task_id)
            status = VideoSynthesis.fetch(task, api_key=self._api_key)
            self._ensure_ok(status, "fetch")
            task_status = status.output.task_status
            if task_status == "SUCCEEDED":
                video_url = status.output.video_url
                if not video_url:
                    raise GenerationError(f"Wanx task {task_id} succeeded without a video URL.")
                content = self._download(video_url)
                _check_abandoned(abandoned, task_id)
                atomic_write(output_path, content)
                return output_path
            if task_status in ("FAILED", "CANCELED", "UNKNOWN"):
                message = getattr(status.output, "message", None) or "task failed"
                raise GenerationError(f"Wanx task {task_id} {task_status.lower()}: {message}")
            if (attempt + 1) % 6 == 0:
                logger.info("Wanx task %s still %s after %d polls", task_id, task_status, attempt + 1)

        raise TimeoutError(f"Wanx task {task_id} not finished after {self._max_polls} polls.")

    @staticmethod
    def _ensure_ok(response: Any, action: str) -> None:
        if response.status_code == HTTPStatus.OK:
            return
        message = f"Wanx {action} failed [{response.status_code}] {response.code}: {response.message}"
        if response.status_code == HTTPStatus.TOO_MANY_REQUESTS:
            raise RateLimitedError(message)
        raise GenerationError(message)

    @staticmethod
    def _as_file_url(path: str) -> str:
        if path.startswith(("http://", "https://", "file://")):
            return path
        local = Path(path)
        if not local.is_file():
            raise FileNotFoundError(f"Keyframe not found: {path}")
        return f"file://{local.resolve()}"

    def _download(self, url: str) -> bytes:
        response = requests.get(url, timeout=self._timeout)
        response.raise_for_status()
        return response.content


def _check_abandoned(abandoned: Optional[threading.Event], task_id: str) -> None:
    if abandoned is not None and abandoned.is_set():
        raise GenerationError(f"Wanx task {task_id} abandoned by caller.")
