"""Video stage: animate every shot from its keyframes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from ..engine.batcher import cooldown_hook, run_batched
from ..engine.unit_of_work import GenerationRequest, generate_with_fallback
from ..services.base import VideoGenerator
from ..services.characters import CharacterLibrary
from ..types import KeyframeSet, Material, MaterialType, MusicProfile, RunState, Shot
from ..utils.files import ensure_dir
from ..utils.prompts import join_parts
from .base import BaseNode
from .resume import ReuseArtifact

logger = logging.getLogger(__name__)


def clip_filename(shot_number: int) -> str:
    return f"shot_{shot_number}.mp4"


def build_video_prompt(
    shot: Shot,
    music: Optional[MusicProfile] = None,
    character_prompt: Optional[str] = None,
) -> str:
    if not shot.video_prompt:
        raise ValueError(f"Shot {shot.shot_number} missing required field video_prompt")
    sync = f"sync: {shot.sync_point}" if shot.sync_point else None
    camera = f"camera {shot.movement}" if shot.movement else None
    style = f"style: {music.style_name}" if music is not None and music.style_name else None
    return join_parts(shot.video_prompt, camera, sync, character_prompt, style)


@dataclass(slots=True)
class VideoTask:
    """Animates one shot from its start (and end) keyframe."""

    shot: Shot
    keyframes: Optional[KeyframeSet]
    client: VideoGenerator
    output_path: str
    music: Optional[MusicProfile] = None
    character_image: Optional[str] = None
    character_prompt: Optional[str] = None

    def validate(self) -> None:
        if self.keyframes is None:
            raise ValueError(f"Shot {self.shot.shot_number} has no keyframes")
        frames = [self.keyframes.start] if self.keyframes.shared else [self.keyframes.start, self.keyframes.end]
        for keyframe in frames:
            if not keyframe.path or not Path(keyframe.path).is_file():
                raise FileNotFoundError(f"Keyframe for shot {self.shot.shot_number} not found: {keyframe.path}")

    def build_request(self) -> GenerationRequest:
        prompt = build_video_prompt(self.shot, self.music, self.character_prompt)
        references = [self.keyframes.start.path, self.keyframes.end.path]
        if self.character_image:
            references.append(self.character_image)
        return GenerationRequest(
            prompt=prompt,
            output_path=self.output_path,
            reference_images=references,
            duration_sec=self.shot.duration,
        )

    async def execute(self, request: GenerationRequest) -> str:
        return await self.client.generate_video(
            request.prompt,
            request.output_path,
            request.reference_images,
            request.duration_sec,
        )


class GenVideoClips(BaseNode):
    """Generates one video material per shot, falling back to the start keyframe."""

    def __init__(
        self,
        run_id: str,
        logger,
        video: VideoGenerator,
        temp_dir: str | Path,
        concurrency: int = 3,
        start_index: int = 0,
        batch_delay_sec: float = 0.0,
        timeout: Optional[float] = None,
        characters: Optional[CharacterLibrary] = None,
    ) -> None:
        super().__init__(name="GenVideoClips", run_id=run_id, logger=logger)
        self._video = video
        self._temp_dir = Path(temp_dir)
        self._concurrency = concurrency
        self._start_index = start_index
        self._batch_delay = batch_delay_sec
        self._timeout = timeout
        self._characters = characters

    async def run(self, state: RunState) -> RunState:
        ensure_dir(self._temp_dir)
        keyframes = {keyframe_set.shot_number: keyframe_set for keyframe_set in state.keyframes}
        materials = [Material.for_shot(shot, MaterialType.VIDEO) for shot in state.shots]
        tasks: Dict[int, VideoTask] = {
            shot.shot_number: self._task_for(shot, keyframes.get(shot.shot_number), state.music)
            for shot in state.shots
        }

        def _fallback(material: Material) -> Optional[str]:
            keyframe_set = keyframes.get(material.shot_number)
            return keyframe_set.start.path if keyframe_set else None

        async def _generate(material: Material) -> None:
            await generate_with_fallback(
                material,
                tasks[material.shot_number],
                fallback_path=_fallback(material),
                timeout=self._timeout,
            )

        async def _reuse(material: Material) -> None:
            await generate_with_fallback(
                material,
                ReuseArtifact(tasks[material.shot_number].output_path),
                fallback_path=_fallback(material),
            )

        skip = min(self._start_index, len(materials))
        if skip:
            logger.info("[%s] resuming at shot %d; reusing %d existing clips", self.name, skip + 1, skip)
            await run_batched(materials[:skip], _reuse, concurrency=self._concurrency)

        self.log_prompt(f"Generating {len(materials) - skip} video clips for {len(state.shots)} shots.")
        await run_batched(
            materials,
            _generate,
            concurrency=self._concurrency,
            start_index=skip,
            on_batch_start=self.log_batch_start,
            on_batch_complete=cooldown_hook(self._batch_delay),
        )

        state.materials = materials
        self.log_summary(materials)
        self.log_response({"materials": [material.to_dict() for material in materials]})
        return state

    def _task_for(self, shot: Shot, keyframe_set: Optional[KeyframeSet], music: Optional[MusicProfile]) -> VideoTask:
        character_image = None
        character_prompt = None
        if self._characters is not None:
            character = self._characters.get(shot.character_name)
            if character is not None:
                character_prompt = character.prompt
                if character.image and Path(character.image).is_file():
                    character_image = character.image
        return VideoTask(
            shot=shot,
            keyframes=keyframe_set,
            client=self._video,
            output_path=str(self._temp_dir / clip_filename(shot.shot_number)),
            music=music,
            character_image=character_image,
            character_prompt=character_prompt,
        )
