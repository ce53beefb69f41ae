"""Deterministic offline backend.

Keeps the pipeline runnable and testable without hitting external services:
keyframes are Pillow placeholder images, clips are text stand-ins and the
storyboard is canned.
"""

from __future__ import annotations

import asyncio
import math
import re
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from PIL import Image, ImageDraw

from ..utils.files import atomic_write
from .base import GenerationError

_HEX_COLOR = re.compile(r"#([0-9A-Fa-f]{6})")
_DEFAULT_GRADIENT = ("#2d1b4e", "#1a1a2e", "#16213e")
_DURATION_LINE = re.compile(r"Audio duration:\s*([0-9.]+)")
_SHOT_LINE = re.compile(r"Shot number:\s*(\d+)")

FailurePredicate = Callable[[str], bool]


class MockTextGenerator:
    """Returns a canned music analysis + storyboard, or a canned shot expansion."""

    def __init__(self, shot_duration_sec: float = 8.0) -> None:
        self._shot_duration = shot_duration_sec

    async def generate_json(self, prompt: str, audio_path: Optional[str] = None) -> dict:
        await asyncio.sleep(0)
        shot_match = _SHOT_LINE.search(prompt)
        if shot_match:
            return self._expansion(int(shot_match.group(1)))
        duration_match = _DURATION_LINE.search(prompt)
        duration = float(duration_match.group(1)) if duration_match else 30.0
        return self._analysis(duration)

    @staticmethod
    def _expansion(shot_number: int) -> dict:
        return {
            "keyframePrompt": f"bright nursery classroom, friendly bear waving, opening pose of shot {shot_number}",
            "videoPrompt": f"the bear claps and bounces to the beat, camera slowly pushes in, shot {shot_number}",
        }

    def _analysis(self, duration: float) -> dict:
        shot_count = max(1, math.ceil(duration / self._shot_duration))
        beats = [round(0.5 * step, 2) for step in range(1, int(duration / 0.5))]
        shots: List[dict] = []
        for idx in range(shot_count):
            start = idx * self._shot_duration
            end = min(duration, start + self._shot_duration)
            shot = {
                "shotNumber": idx + 1,
                "startTime": start,
                "endTime": end,
                "framing": ("wide shot", "medium shot", "close-up")[idx % 3],
                "composition": "character centred on a sunny meadow, #FFD166 sky, #06D6A0 grass",
                "lighting": "warm soft daylight",
                "movement": ("push", "pan", "static")[idx % 3],
                "action": "the bear dances and waves to the rhythm",
                "syncPoint": f"claps land on beats near {start + 1:.2f}s",
                "beatPoint": start + 1.0,
                "transition": {"type": "cut", "duration": 0.0},
                "characterName": None,
                "keyframePrompt": f"cheerful bear standing in a meadow, start of shot {idx + 1}",
            }
            if idx % 2 == 0:
                shot["videoPrompt"] = f"the bear hops left and right on every beat, shot {idx + 1}"
            shots.append(shot)

        return {
            "musicAnalysis": {
                "emotion": {"primary": "joyful", "intensity": 8, "secondary": ["playful"]},
                "rhythm": {"bpm": 120, "character": "bouncy mid tempo", "changes": []},
                "theme": {"keywords": ["friendship", "play", "sunshine"], "mainTheme": "friendship"},
                "structure": [{"type": "verse", "startTime": 0, "endTime": duration, "description": "single verse"}],
                "climax": {"time": round(duration * 0.7, 2), "intensity": 9},
                "beatPoints": beats,
            },
            "visualConcept": {
                "style": {"name": "cheerful 3D nursery animation"},
                "colorPalette": {"primary": ["#FFD166", "#06D6A0", "#118AB2"]},
            },
            "storyboard": {"shots": shots, "totalDuration": duration},
        }


class MockImageGenerator:
    """Draws a gradient placeholder keyframe using colours found in the prompt."""

    def __init__(self, size: tuple[int, int] = (640, 360), fail_when: Optional[FailurePredicate] = None) -> None:
        self._size = size
        self._fail_when = fail_when

    async def generate_image(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
    ) -> str:
        await asyncio.sleep(0)
        if self._fail_when is not None and self._fail_when(output_path):
            raise GenerationError(f"mock image failure for {Path(output_path).name}")
        atomic_write(output_path, self._render(prompt, Path(output_path).stem))
        return output_path

    def _render(self, prompt: str, label: str) -> bytes:
        width, height = self._size
        colors = [f"#{value}" for value in _HEX_COLOR.findall(prompt)] or list(_DEFAULT_GRADIENT)
        if len(colors) == 1:
            colors.append(colors[0])
        stops = [_hex_to_rgb(color) for color in colors]

        image = Image.new("RGB", (width, height))
        draw = ImageDraw.Draw(image)
        segments = len(stops) - 1
        for x in range(width):
            position = x / max(width - 1, 1) * segments
            index = min(int(position), segments - 1)
            ratio = position - index
            left, right = stops[index], stops[index + 1]
            color = tuple(int(a + (b - a) * ratio) for a, b in zip(left, right))
            draw.line([(x, 0), (x, height)], fill=color)

        draw.rectangle([8, 8, width - 9, height - 9], outline=(255, 255, 255), width=3)
        draw.text((20, 20), label, fill=(255, 255, 255))
        draw.text((20, 40), prompt[:80], fill=(255, 255, 255))

        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()


class MockVideoGenerator:
    """Writes a text stand-in clip describing its inputs."""

    def __init__(self, fail_when: Optional[FailurePredicate] = None, delay_sec: float = 0.0) -> None:
        self._fail_when = fail_when
        self._delay = delay_sec

    async def generate_video(
        self,
        prompt: str,
        output_path: str,
        reference_images: Sequence[str] = (),
        duration_sec: Optional[float] = None,
    ) -> str:
        await asyncio.sleep(self._delay)
        if self._fail_when is not None and self._fail_when(output_path):
            raise GenerationError(f"mock video failure for {Path(output_path).name}")
        lines = [
            f"[Video clip {Path(output_path).stem}]",
            f"Duration: {duration_sec}",
            f"References: {', '.join(reference_images)}",
            f"Prompt: {prompt}",
        ]
        atomic_write(output_path, "\n".join(lines).encode("utf-8"))
        return output_path


def _hex_to_rgb(color: str) -> tuple[int, int, int]:
    value = color.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
