"""即梦 (Jimeng) client for keyframe images and first/tail-frame video clips."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence
from urllib.parse import urlparse

import requests
from volcengine.visual.VisualService import VisualService

from ..utils.files import atomic_write, b64decode_to_bytes, b64encode, read_binary
from .base import GenerationError, RateLimitedError, ServiceConfigError, looks_rate_limited

JIMENG_I2V_REQ_KEY = "jimeng_i2v_first_tail_v30_1080"
JIMENG_KEYFRAME_REQ_KEY = "jimeng_i2i_v30"
JIMENG_T2I_REQ_KEY = "jimeng_high_aes_general_v21_L"
VALID_FRAME_COUNTS = (121, 241)
DEFAULT_FPS = 24

logger = logging.getLogger(__name__)


class JimengClient:
    """Wraps the volcengine visual service's async-task endpoints.

    The SDK is blocking, so the public coroutines run each submit/poll cycle
    in a worker thread.
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_secret: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: int = 120,
        poll_interval: float = 2.0,
        max_poll_attempts: int = 300,
    ) -> None:
        if not api_secret and api_key and ":" in api_key:
            api_key, api_secret = api_key.split(":", 1)
        if not api_key or not api_secret:
            raise ServiceConfigError("Jimeng access key and secret are required.")
        self._api_key = api_key
        self._api_secret = api_secret
        self._api_url = api_url
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts
        self._visual_service: Optional[VisualService] = None

    async def generate_image(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
    ) -> str:
        form = self._build_keyframe_form(prompt, reference_images)
        return await self._run_task(form, output_path)

    async def generate_video(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
        duration_sec: Optional[float] = None,
    ) -> str:
        form = self._build_video_form(prompt, reference_images, duration_sec)
        return await self._run_task(form, output_path)

    async def _run_task(self, form: Dict[str, Any], output_path: str) -> str:
        abandoned = threading.Event()
        try:
            response = await asyncio.to_thread(self._call_visual_service, form, abandoned)
        except asyncio.CancelledError:
            # The polling thread cannot be interrupted; it stops before its next query.
            abandoned.set()
            raise
        return await asyncio.to_thread(self._save_result, response, output_path)

    def _build_keyframe_form(self, prompt: str, reference_images: Sequence[str]) -> Dict[str, Any]:
        existing = [path for path in reference_images if Path(path).is_file()]
        if not existing:
            return {
                "req_key": JIMENG_T2I_REQ_KEY,
                "prompt": prompt,
                "seed": -1,
                "width": 1280,
                "height": 720,
                "use_pre_llm": True,
                "return_url": True,
            }
        return {
            "req_key": JIMENG_KEYFRAME_REQ_KEY,
            "binary_data_base64": [b64encode(read_binary(existing[0]))],
            "prompt": prompt,
            "seed": -1,
            "use_rephraser": True,
        }

    def _build_video_form(
        self,
        prompt: str,
        reference_images: Sequence[str],
        duration_sec: Optional[float],
    ) -> Dict[str, Any]:
        if not reference_images:
            raise GenerationError("Jimeng first/tail video needs at least one keyframe.")
        first = reference_images[0]
        last = reference_images[1] if len(reference_images) > 1 else first
        binaries: list[str] = []
        for path, label in ((first, "first"), (last, "tail")):
            if not Path(path).is_file():
                raise FileNotFoundError(f"Missing {label} frame: {path}")
            binaries.append(b64encode(read_binary(path)))

        return {
            "req_key": JIMENG_I2V_REQ_KEY,
            "binary_data_base64": binaries,
            "prompt": prompt,
            "seed": -1,
            "frames": self._select_frame_count(duration_sec, DEFAULT_FPS),
        }

    @staticmethod
    def _select_frame_count(duration: Optional[float], fps: int) -> int:
        if duration is None:
            return VALID_FRAME_COUNTS[0]
        approx = int(round(max(duration, 0) * fps)) + 1
        return min(VALID_FRAME_COUNTS, key=lambda option: abs(option - approx))

    def _call_visual_service(
        self,
        form: Dict[str, Any],
        abandoned: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        service = self._get_visual_service()
        try:
            submit_response = service.cv_sync2async_submit_task(form)
        except Exception as exc:
            if looks_rate_limited(exc):
                raise RateLimitedError(str(exc)) from exc
            raise
        logger.debug("Jimeng submit response: %s", submit_response)
        return self._wait_for_cv_task(
            initial_response=submit_response,
            form=form,
            poll_callable=service.cv_sync2async_get_result,
            task_action="CVSync2AsyncGetResult",
            abandoned=abandoned,
        )

    def _wait_for_cv_task(
        self,
        *,
        initial_response: Dict[str, Any],
        form: Dict[str, Any],
        poll_callable: Callable[[Dict[str, Any]], Dict[str, Any]],
        task_action: str,
        abandoned: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        response = self._ensure_visual_success(initial_response)
        task_id = self._extract_string(response, ("task_id", "TaskId"))
        if not task_id:
            raise GenerationError(f"{task_action} response missing task_id: {response}")

        query_form: Dict[str, Any] = {"req_key": form["req_key"], "task_id": task_id}
        failure_states = {"not_found", "expired", "failed", "error"}

        for _ in range(self._max_poll_attempts):
            if abandoned is not None and abandoned.is_set():
                raise GenerationError(f"{task_action} task {task_id} abandoned by caller.")
            result = self._ensure_visual_success(poll_callable(query_form))
            status = self._extract_string(result, ("status",))
            media_url = self._extract_media_url(result)
            base64_blob = self._extract_base64_blob(result)
            logger.debug("Jimeng %s poll status: %s, has media: %s", task_action, status, bool(media_url or base64_blob))
            if status:
                status_lower = status.lower()
                if status_lower == "done" and (media_url or base64_blob):
                    return result
                if status_lower in failure_states:
                    message = self._extract_string(result, ("message", "error_message")) or "task failed"
                    raise GenerationError(f"{task_action} failed with status {status}: {message}")
            if media_url or base64_blob:
                return result
            time.sleep(self._poll_interval)

        raise TimeoutError(f"{task_action} result not ready after {self._max_poll_attempts} attempts.")

    def _save_result(self, response: Dict[str, Any], output_path: str) -> str:
        base64_data = self._extract_base64_blob(response)
        if base64_data:
            binary = b64decode_to_bytes(base64_data)
        else:
            media_url = self._extract_media_url(response)
            if not media_url:
                raise GenerationError(f"Jimeng response missing payload: {response}")
            binary = self._download_binary(media_url)
        atomic_write(output_path, binary)
        return output_path

    def _get_visual_service(self) -> VisualService:
        if self._visual_service is None:
            service = VisualService()
            service.set_ak(self._api_key)
            service.set_sk(self._api_secret)
            if self._api_url:
                parsed = urlparse(self._api_url)
                if parsed.scheme:
                    service.set_scheme(parsed.scheme)
                host = parsed.netloc or parsed.path
                if host:
                    service.set_host(host)
            if self._timeout:
                service.set_connection_timeout(self._timeout)
                service.set_socket_timeout(self._timeout)
            self._visual_service = service
        return self._visual_service

    @staticmethod
    def _ensure_visual_success(response: Dict[str, Any]) -> Dict[str, Any]:
        if isinstance(response, dict):
            for key in ("code", "Code", "status", "Status"):
                value = response.get(key)
                if value is None:
                    continue
                value_str = str(value)
                if value_str not in {"0", "10000"}:
                    message = response.get("message") or response.get("Message") or "Unknown error"
                    error_cls = RateLimitedError if value_str in {"429", "50429", "50430"} else GenerationError
                    raise error_cls(f"Jimeng CV service error [{value_str}]: {message}")

            metadata = response.get("ResponseMetadata") or response.get("response_metadata")
            if isinstance(metadata, dict):
                error = metadata.get("Error") or metadata.get("error")
                if isinstance(error, dict):
                    code = str(error.get("Code") or error.get("code") or "").strip()
                    if code.lower() not in {"", "0", "ok", "success"}:
                        message = error.get("Message") or error.get("message") or ""
                        raise GenerationError(f"Jimeng CV service error [{code}]: {message}")
        return response

    @staticmethod
    def _extract_string(response: dict, candidates: tuple[str, ...]) -> Optional[str]:
        lowered = {candidate.replace("_", "").lower() for candidate in candidates}
        for container in JimengClient._candidate_containers(response):
            for key, value in container.items():
                normalized = key.replace("_", "").lower()
                if isinstance(value, str) and value and normalized in lowered:
                    return value
        return None

    @staticmethod
    def _candidate_containers(response: dict) -> list[dict]:
        containers: list[dict] = []
        seen: set[int] = set()
        stack: list[Any] = [response]
        while stack:
            item = stack.pop()
            if isinstance(item, dict):
                identifier = id(item)
                if identifier in seen:
                    continue
                seen.add(identifier)
                containers.append(item)
                stack.extend(item.values())
            elif isinstance(item, list):
                stack.extend(item)
        return containers

    @staticmethod
    def _extract_base64_blob(response: Dict[str, Any]) -> Optional[str]:
        for container in JimengClient._candidate_containers(response):
            for key, value in container.items():
                lowered = key.lower()
                if "base64" not in lowered and not lowered.endswith("_b64"):
                    continue
                if isinstance(value, str) and value:
                    return value
                if isinstance(value, list):
                    first = next((item for item in value if isinstance(item, str) and item), None)
                    if first:
                        return first
        return None

    @staticmethod
    def _extract_media_url(response: Dict[str, Any]) -> Optional[str]:
        for container in JimengClient._candidate_containers(response):
            for key, value in container.items():
                lowered = key.lower()
                if isinstance(value, str) and value and lowered in {"video_url", "url", "image_url"}:
                    return value
                if isinstance(value, list) and value and lowered in {"video_urls", "image_urls", "urls"}:
                    first = next((item for item in value if isinstance(item, str) and item), None)
                    if first:
                        return first
        return None

    def _download_binary(self, url: str) -> bytes:
        response = requests.get(url, timeout=self._timeout)
        response.raise_for_status()
        return response.content
