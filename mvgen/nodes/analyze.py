"""Music analysis: one audio-grounded LLM call yielding analysis, concept and storyboard."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional

from ..services.base import TextGenerator
from ..types import MusicProfile, RunState, StoryboardError
from ..utils.media import DEFAULT_DURATION_SEC, media_duration
from ..utils.prompts import load_prompt
from .base import BaseNode

logger = logging.getLogger(__name__)


class AnalyzeMusic(BaseNode):
    """Asks the text backend to analyse the song and draft a storyboard."""

    def __init__(self, run_id: str, logger, text: TextGenerator, shot_duration_sec: float = 8.0) -> None:
        super().__init__(name="AnalyzeMusic", run_id=run_id, logger=logger)
        self._text = text
        self._shot_duration = shot_duration_sec

    async def run(self, state: RunState) -> RunState:
        if state.duration_sec is None:
            if state.audio_path:
                # ffprobe is a blocking subprocess.
                state.duration_sec = await asyncio.to_thread(media_duration, state.audio_path)
            else:
                state.duration_sec = DEFAULT_DURATION_SEC
        duration = state.duration_sec

        prompt = load_prompt(
            "analyze_music",
            {
                "duration": f"{duration:.2f}",
                "shot_duration": f"{self._shot_duration:g}",
                "shot_count": max(1, math.ceil(duration / self._shot_duration)),
                "lyrics": state.lyrics or "(instrumental, no lyrics provided)",
            },
        )
        self.log_prompt(prompt)

        payload = await self._analyse(prompt, state.audio_path)
        self.log_response(payload)

        state.music = self._parse_profile(payload, duration)
        state.raw_shots = self._extract_shots(payload)
        logger.info(
            "Music analysed: %s, %s BPM, %d storyboard shots",
            state.music.emotion.get("primary", "unknown emotion"),
            state.music.bpm or "?",
            len(state.raw_shots),
        )
        return state

    async def _analyse(self, prompt: str, audio_path: Optional[str]) -> Dict[str, Any]:
        if audio_path:
            try:
                return await self._text.generate_json(prompt, audio_path=audio_path)
            except Exception as exc:  # noqa: BLE001 - retried below without audio
                logger.warning("Audio-grounded analysis failed (%s); retrying in text-only mode", exc)
        return await self._text.generate_json(prompt)

    @staticmethod
    def _parse_profile(payload: Dict[str, Any], duration: float) -> MusicProfile:
        analysis = payload.get("musicAnalysis") or {}
        concept = payload.get("visualConcept") or {}
        if not isinstance(analysis, dict) or not isinstance(concept, dict):
            raise StoryboardError("Music analysis response has an unexpected shape.")

        style = concept.get("style") or {}
        palette = concept.get("colorPalette") or {}
        beats: List[float] = []
        for value in analysis.get("beatPoints") or []:
            try:
                beats.append(float(value))
            except (TypeError, ValueError):
                continue

        return MusicProfile(
            duration_sec=duration,
            emotion=dict(analysis.get("emotion") or {}),
            rhythm=dict(analysis.get("rhythm") or {}),
            theme=dict(analysis.get("theme") or {}),
            structure=list(analysis.get("structure") or []),
            climax=dict(analysis.get("climax") or {}),
            beat_points=sorted(beats),
            style_name=str(style.get("name", "")) if isinstance(style, dict) else str(style),
            primary_colors=[str(color) for color in palette.get("primary") or []] if isinstance(palette, dict) else [],
            raw=payload,
        )

    @staticmethod
    def _extract_shots(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        storyboard = payload.get("storyboard")
        if isinstance(storyboard, dict):
            shots = storyboard.get("shots")
        elif isinstance(storyboard, list):
            shots = storyboard
        else:
            shots = payload.get("shots")
        return [shot for shot in shots or [] if isinstance(shot, dict)]
