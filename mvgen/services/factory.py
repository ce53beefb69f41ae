"""Builds the generation clients selected by the pipeline configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import PipelineConfig
from .aliyun import AliyunVideoClient
from .base import ImageGenerator, TextGenerator, VideoGenerator
from .characters import CharacterLibrary
from .deepseek import DeepSeekClient
from .gemini import GeminiClient
from .jimeng import JimengClient
from .mock import MockImageGenerator, MockTextGenerator, MockVideoGenerator


@dataclass(slots=True)
class ServiceBundle:
    """Clients handed to the nodes of one pipeline instance."""

    text: TextGenerator
    image: ImageGenerator
    video: VideoGenerator
    characters: Optional[CharacterLibrary] = None


def build_services(config: PipelineConfig) -> ServiceBundle:
    """Construct each backend once; a client shared by two roles is reused."""
    gemini: Optional[GeminiClient] = None
    jimeng: Optional[JimengClient] = None

    def _gemini() -> GeminiClient:
        nonlocal gemini
        if gemini is None:
            gemini = GeminiClient(api_key=config.gemini_api_key)
        return gemini

    def _jimeng() -> JimengClient:
        nonlocal jimeng
        if jimeng is None:
            jimeng = JimengClient(
                api_key=config.jimeng_api_key,
                api_secret=config.jimeng_api_secret,
                api_url=config.jimeng_api_url,
            )
        return jimeng

    if config.text_backend == "gemini":
        text: TextGenerator = _gemini()
    elif config.text_backend == "deepseek":
        text = DeepSeekClient(api_key=config.deepseek_api_key, api_url=config.deepseek_api_url)
    else:
        text = MockTextGenerator(shot_duration_sec=config.shot_duration_sec)

    if config.image_backend == "gemini":
        image: ImageGenerator = _gemini()
    elif config.image_backend == "jimeng":
        image = _jimeng()
    else:
        image = MockImageGenerator()

    if config.video_backend == "gemini":
        video: VideoGenerator = _gemini()
    elif config.video_backend == "jimeng":
        video = _jimeng()
    elif config.video_backend == "aliyun":
        video = AliyunVideoClient(api_key=config.dashscope_api_key)
    else:
        video = MockVideoGenerator()

    characters = CharacterLibrary.load(config.character_library) if config.character_library else None
    return ServiceBundle(text=text, image=image, video=video, characters=characters)
