"""Nodes that turn the drafted storyboard into timed shots and fill in their prompts."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional

from ..engine.batcher import run_batched
from ..engine.outcome import describe_error, with_timeout
from ..services.base import TextGenerator
from ..services.characters import CharacterLibrary
from ..types import MusicProfile, RunState, Shot, StoryboardError
from ..utils.prompts import join_parts, load_prompt
from .base import BaseNode

logger = logging.getLogger(__name__)

# storyboard key -> Shot attribute
_SHOT_FIELDS = {
    "framing": "framing",
    "composition": "composition",
    "lighting": "lighting",
    "movement": "movement",
    "action": "action",
    "syncPoint": "sync_point",
    "beatPoint": "beat_point",
    "transition": "transition",
    "keyframePrompt": "keyframe_prompt",
    "videoPrompt": "video_prompt",
    "prompt": "prompt",
    "characterName": "character_name",
}


def plan_shot_times(duration: float, shot_duration: float) -> List[tuple[float, float]]:
    """Fixed-length shot windows covering ``duration``; the last one ends exactly at it."""
    if duration <= 0:
        raise StoryboardError(f"Audio duration must be positive, got {duration}")
    count = math.ceil(duration / shot_duration)
    windows = []
    for index in range(count):
        start = round(index * shot_duration, 3)
        end = duration if index == count - 1 else round(start + shot_duration, 3)
        windows.append((start, end))
    return windows


class PlanShots(BaseNode):
    """Normalises raw storyboard dictionaries into ``Shot`` records with fixed timing."""

    def __init__(
        self,
        run_id: str,
        logger,
        shot_duration_sec: float = 8.0,
        characters: Optional[CharacterLibrary] = None,
    ) -> None:
        super().__init__(name="PlanShots", run_id=run_id, logger=logger)
        self._shot_duration = shot_duration_sec
        self._characters = characters

    async def run(self, state: RunState) -> RunState:
        if state.duration_sec is None:
            raise StoryboardError("Cannot plan shots before the audio duration is known.")
        windows = plan_shot_times(state.duration_sec, self._shot_duration)
        raw_shots = state.raw_shots
        if len(raw_shots) != len(windows):
            logger.warning(
                "Storyboard has %d shots but %d are needed for %.2fs; padding/truncating",
                len(raw_shots),
                len(windows),
                state.duration_sec,
            )

        shots: List[Shot] = []
        for index, (start, end) in enumerate(windows):
            raw = raw_shots[index] if index < len(raw_shots) else {}
            shots.append(self._build_shot(index + 1, start, end, raw, state.music))

        state.shots = shots
        self.log_prompt(f"Planning {len(shots)} shots of {self._shot_duration:g}s for {state.duration_sec:.2f}s audio.")
        self.log_response({"shots": [shot.to_dict() for shot in shots]})
        return state

    def _build_shot(
        self,
        shot_number: int,
        start: float,
        end: float,
        raw: Dict[str, Any],
        music: Optional[MusicProfile],
    ) -> Shot:
        values: Dict[str, Any] = {}
        for key, attribute in _SHOT_FIELDS.items():
            value = raw.get(key, raw.get(attribute))
            if value not in (None, ""):
                values[attribute] = value

        beat_point = values.get("beat_point")
        try:
            values["beat_point"] = float(beat_point) if beat_point is not None else None
        except (TypeError, ValueError):
            values["beat_point"] = None
        if values["beat_point"] is None and music is not None:
            beats = music.beats_between(start, end)
            values["beat_point"] = beats[0] if beats else None
        if values.get("transition") is not None and not isinstance(values["transition"], dict):
            values["transition"] = {"type": str(values["transition"])}

        if self._characters is not None:
            named = self._characters.get(values.get("character_name"))
            if named is None:
                description = join_parts(values.get("composition"), values.get("action"), sep=" ")
                named = self._characters.select(description, shot_number)
            values["character_name"] = named.name

        return Shot(shot_number=shot_number, start_time=start, end_time=end, **values)


class ExpandShots(BaseNode):
    """Asks the text backend for missing keyframe/video prompts, shot by shot.

    A shot whose expansion fails is left untouched; the generation stage that
    needs the missing prompt then fails that shot alone.
    """

    def __init__(
        self,
        run_id: str,
        logger,
        text: TextGenerator,
        concurrency: int = 3,
        characters: Optional[CharacterLibrary] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(name="ExpandShots", run_id=run_id, logger=logger)
        self._text = text
        self._concurrency = concurrency
        self._characters = characters
        self._timeout = timeout

    async def run(self, state: RunState) -> RunState:
        if not state.shots:
            raise StoryboardError("No shots to expand.")
        pending = [shot for shot in state.shots if not shot.keyframe_prompt or not shot.video_prompt]
        results: Dict[int, Dict[str, Any]] = {}

        async def _expand(shot: Shot) -> None:
            prompt = self._build_prompt(shot, state.music)
            try:
                payload = await with_timeout(lambda: self._text.generate_json(prompt), self._timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - one shot's expansion must not stop the others
                error = describe_error(exc)
                logger.warning("Shot %d expansion failed: %s", shot.shot_number, error)
                results[shot.shot_number] = {"error": error}
                return
            keyframe_prompt = _as_text(payload.get("keyframePrompt"))
            video_prompt = _as_text(payload.get("videoPrompt"))
            shot.keyframe_prompt = shot.keyframe_prompt or keyframe_prompt
            shot.video_prompt = shot.video_prompt or video_prompt
            results[shot.shot_number] = {"keyframePrompt": keyframe_prompt, "videoPrompt": video_prompt}

        self.log_prompt(f"Expanding prompts for shots {[shot.shot_number for shot in pending]}.")
        await run_batched(
            pending,
            _expand,
            concurrency=self._concurrency,
            on_batch_start=self.log_batch_start,
        )
        self.log_response({"expanded": results})
        logger.info("[%s] %d/%d shots needed expansion", self.name, len(pending), len(state.shots))
        return state

    def _build_prompt(self, shot: Shot, music: Optional[MusicProfile]) -> str:
        character = self._characters.get(shot.character_name) if self._characters else None
        return load_prompt(
            "expand_shot",
            {
                "shot_number": shot.shot_number,
                "time_range": shot.time_range,
                "duration": f"{shot.duration:.2f}",
                "style_name": music.style_name if music else "",
                "colors": ", ".join(music.primary_colors) if music else "",
                "emotion": music.emotion.get("primary", "") if music else "",
                "beats": ", ".join(f"{beat:.2f}" for beat in music.beats_between(shot.start_time, shot.end_time))
                if music
                else "",
                "framing": shot.framing,
                "composition": shot.composition,
                "lighting": shot.lighting,
                "movement": shot.movement,
                "action": shot.action,
                "sync_point": shot.sync_point,
                "character": character.prompt if character else shot.character_name,
            },
        )


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
