"""Configuration containers for the music video pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar, Optional

from dotenv import load_dotenv

KEYFRAME_MODES = ("single", "ab")
TEXT_BACKENDS = ("mock", "gemini", "deepseek")
IMAGE_BACKENDS = ("mock", "gemini", "jimeng")
VIDEO_BACKENDS = ("mock", "gemini", "jimeng", "aliyun")


class ConfigError(ValueError):
    """Raised when the pipeline configuration is inconsistent."""


@dataclass(slots=True)
class PipelineConfig:
    """Static configuration applied to every pipeline run."""

    env_prefix: ClassVar[str] = "MVGEN_"

    input_dir: str = "input"
    output_dir: str = "output"
    temp_dir: str = "temp"
    runs_dir: str = "runs"

    text_backend: str = "mock"
    image_backend: str = "mock"
    video_backend: str = "mock"

    gemini_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    deepseek_api_url: Optional[str] = None
    jimeng_api_key: Optional[str] = None
    jimeng_api_secret: Optional[str] = None
    jimeng_api_url: Optional[str] = None
    dashscope_api_key: Optional[str] = None

    concurrency: int = 3
    keyframe_concurrency: Optional[int] = None
    video_concurrency: Optional[int] = None
    batch_delay_sec: float = 0.0
    item_timeout_sec: Optional[float] = None
    start_index: int = 0

    keyframe_mode: str = "single"
    shot_duration_sec: float = 8.0
    reference_image: Optional[str] = None
    character_library: Optional[str] = None
    dry_run_compose: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject settings the engine or the backend factory cannot honour."""
        if self.concurrency < 1:
            raise ConfigError("concurrency must be a positive integer")
        for name in ("keyframe_concurrency", "video_concurrency"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ConfigError(f"{name} must be a positive integer")
        if self.start_index < 0:
            raise ConfigError("start_index must be >= 0")
        if self.batch_delay_sec < 0:
            raise ConfigError("batch_delay_sec must be >= 0")
        if self.item_timeout_sec is not None and self.item_timeout_sec <= 0:
            raise ConfigError("item_timeout_sec must be positive when set")
        if self.shot_duration_sec <= 0:
            raise ConfigError("shot_duration_sec must be positive")
        if self.keyframe_mode not in KEYFRAME_MODES:
            raise ConfigError(f"keyframe_mode must be one of {KEYFRAME_MODES}")
        for name, allowed in (
            ("text_backend", TEXT_BACKENDS),
            ("image_backend", IMAGE_BACKENDS),
            ("video_backend", VIDEO_BACKENDS),
        ):
            if getattr(self, name) not in allowed:
                raise ConfigError(f"{name} must be one of {allowed}")

    @property
    def stage_concurrency(self) -> dict[str, int]:
        return {
            "keyframes": self.keyframe_concurrency or self.concurrency,
            "videos": self.video_concurrency or self.concurrency,
        }

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create a config object populated from environment variables and ``.env``."""
        load_dotenv()
        prefix = cls.env_prefix
        return cls(
            input_dir=os.getenv(f"{prefix}INPUT_DIR", "input"),
            output_dir=os.getenv(f"{prefix}OUTPUT_DIR", "output"),
            temp_dir=os.getenv(f"{prefix}TEMP_DIR", "temp"),
            runs_dir=os.getenv(f"{prefix}RUNS_DIR", "runs"),
            text_backend=os.getenv(f"{prefix}TEXT_BACKEND", "mock").lower(),
            image_backend=os.getenv(f"{prefix}IMAGE_BACKEND", "mock").lower(),
            video_backend=os.getenv(f"{prefix}VIDEO_BACKEND", "mock").lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            deepseek_api_key=os.getenv("DEEPSEEK_API_KEY"),
            deepseek_api_url=os.getenv("DEEPSEEK_API_URL"),
            jimeng_api_key=os.getenv("JIMENG_API_KEY"),
            jimeng_api_secret=os.getenv("JIMENG_API_SECRET"),
            jimeng_api_url=os.getenv("JIMENG_API_URL"),
            dashscope_api_key=os.getenv("DASHSCOPE_API_KEY"),
            concurrency=_int_env(f"{prefix}CONCURRENCY", 3),
            keyframe_concurrency=_optional_int_env(f"{prefix}KEYFRAME_CONCURRENCY"),
            video_concurrency=_optional_int_env(f"{prefix}VIDEO_CONCURRENCY"),
            batch_delay_sec=float(os.getenv(f"{prefix}BATCH_DELAY_SEC", "0")),
            item_timeout_sec=_optional_float_env(f"{prefix}ITEM_TIMEOUT_SEC"),
            start_index=_int_env(f"{prefix}START_INDEX", 0),
            keyframe_mode=os.getenv(f"{prefix}KEYFRAME_MODE", "single").lower(),
            shot_duration_sec=float(os.getenv(f"{prefix}SHOT_DURATION_SEC", "8")),
            reference_image=os.getenv(f"{prefix}REFERENCE_IMAGE") or None,
            character_library=os.getenv(f"{prefix}CHARACTER_LIBRARY") or None,
            dry_run_compose=os.getenv(f"{prefix}DRY_RUN_COMPOSE", "true").lower() == "true",
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _optional_int_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else None


def _optional_float_env(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else None
