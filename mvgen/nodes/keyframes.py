"""Keyframe stage: one (single) or two (A/B) still images per shot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..engine.batcher import cooldown_hook, run_batched
from ..engine.unit_of_work import GenerationRequest, generate_with_fallback
from ..services.base import ImageGenerator
from ..services.characters import CharacterLibrary
from ..types import Keyframe, KeyframeSet, Material, MaterialStatus, MaterialType, MusicProfile, RunState, Shot
from ..utils.files import ensure_dir
from ..utils.prompts import join_parts
from .base import BaseNode
from .resume import ReuseArtifact

logger = logging.getLogger(__name__)

_PHASES = {
    None: "",
    "A": "opening frame of the shot",
    "B": "closing frame of the shot, the action completed",
}


def keyframe_filename(shot_number: int, label: Optional[str] = None) -> str:
    suffix = f"_{label}" if label else ""
    return f"shot_{shot_number}{suffix}.png"


def build_keyframe_prompt(
    shot: Shot,
    label: Optional[str] = None,
    music: Optional[MusicProfile] = None,
    character_prompt: Optional[str] = None,
) -> str:
    """Compose the image prompt for one keyframe; raises when the shot has no keyframe prompt."""
    if not shot.keyframe_prompt:
        raise ValueError(f"Shot {shot.shot_number} missing required field keyframe_prompt")
    style = None
    if music is not None and music.style_name:
        style = f"style: {music.style_name}"
    colors = None
    if music is not None and music.primary_colors:
        colors = "palette " + " ".join(music.primary_colors)
    action = shot.action if label == "B" else None
    return join_parts(
        shot.keyframe_prompt,
        action,
        _PHASES[label],
        shot.framing,
        shot.lighting,
        character_prompt,
        style,
        colors,
        "16:9 cinematic frame",
    )


@dataclass(slots=True)
class KeyframeTask:
    """Generates the keyframe image bound to one material."""

    shot: Shot
    material: Material
    client: ImageGenerator
    output_path: str
    music: Optional[MusicProfile] = None
    references: List[str] = field(default_factory=list)
    character_prompt: Optional[str] = None

    def validate(self) -> None:
        missing = [path for path in self.references if not Path(path).is_file()]
        if missing:
            raise FileNotFoundError(f"Reference image not found: {', '.join(missing)}")

    def build_request(self) -> GenerationRequest:
        prompt = build_keyframe_prompt(self.shot, self.material.label, self.music, self.character_prompt)
        return GenerationRequest(prompt=prompt, output_path=self.output_path, reference_images=list(self.references))

    async def execute(self, request: GenerationRequest) -> str:
        return await self.client.generate_image(request.prompt, request.output_path, request.reference_images)


class GenKeyframes(BaseNode):
    """Generates keyframe materials in batches and groups them into keyframe sets."""

    def __init__(
        self,
        run_id: str,
        logger,
        image: ImageGenerator,
        output_dir: str | Path,
        mode: str = "single",
        concurrency: int = 3,
        start_index: int = 0,
        batch_delay_sec: float = 0.0,
        timeout: Optional[float] = None,
        reference_image: Optional[str] = None,
        characters: Optional[CharacterLibrary] = None,
    ) -> None:
        super().__init__(name="GenKeyframes", run_id=run_id, logger=logger)
        self._image = image
        self._keyframe_dir = Path(output_dir) / "keyframes"
        self._mode = mode
        self._concurrency = concurrency
        self._start_index = start_index
        self._batch_delay = batch_delay_sec
        self._timeout = timeout
        self._reference_image = reference_image
        self._characters = characters

    @property
    def labels(self) -> tuple:
        return ("A", "B") if self._mode == "ab" else (None,)

    async def run(self, state: RunState) -> RunState:
        ensure_dir(self._keyframe_dir)
        shots_by_number = {shot.shot_number: shot for shot in state.shots}
        materials = [
            Material.for_shot(shot, MaterialType.IMAGE, label=label)
            for shot in state.shots
            for label in self.labels
        ]
        tasks: Dict[int, KeyframeTask] = {
            id(material): self._task_for(shots_by_number[material.shot_number], material, state.music)
            for material in materials
        }

        async def _generate(material: Material) -> None:
            await generate_with_fallback(
                material,
                tasks[id(material)],
                fallback_path=self._reference_image,
                timeout=self._timeout,
            )

        async def _reuse(material: Material) -> None:
            await generate_with_fallback(
                material,
                ReuseArtifact(tasks[id(material)].output_path),
                fallback_path=self._reference_image,
            )

        skip = min(self._start_index * len(self.labels), len(materials))
        if skip:
            logger.info("[%s] resuming at shot %d; reusing %d existing keyframes", self.name, self._start_index + 1, skip)
            await run_batched(materials[:skip], _reuse, concurrency=self._concurrency)

        self.log_prompt(
            f"Generating {len(materials) - skip} keyframes ({self._mode} mode) for {len(state.shots)} shots."
        )
        await run_batched(
            materials,
            _generate,
            concurrency=self._concurrency,
            start_index=skip,
            on_batch_start=self.log_batch_start,
            on_batch_complete=cooldown_hook(self._batch_delay),
        )

        state.keyframe_materials = materials
        state.keyframes = self._group(state.shots, materials)
        self.log_summary(materials)
        self.log_response(
            {
                "materials": [material.to_dict() for material in materials],
                "keyframes": [keyframe_set.to_dict() for keyframe_set in state.keyframes],
            }
        )
        return state

    def _task_for(self, shot: Shot, material: Material, music: Optional[MusicProfile]) -> KeyframeTask:
        references: List[str] = []
        if self._reference_image and Path(self._reference_image).is_file():
            references.append(self._reference_image)
        character_prompt = None
        if self._characters is not None:
            character = self._characters.get(shot.character_name)
            if character is not None:
                character_prompt = character.prompt
                if character.image and Path(character.image).is_file():
                    references.append(character.image)
        return KeyframeTask(
            shot=shot,
            material=material,
            client=self._image,
            output_path=str(self._keyframe_dir / keyframe_filename(shot.shot_number, material.label)),
            music=music,
            references=references,
            character_prompt=character_prompt,
        )

    def _group(self, shots: List[Shot], materials: List[Material]) -> List[KeyframeSet]:
        per_shot = len(self.labels)
        sets: List[KeyframeSet] = []
        for index, shot in enumerate(shots):
            next_number = shots[index + 1].shot_number if index + 1 < len(shots) else None
            frames = [
                self._keyframe(shot, material, next_number)
                for material in materials[index * per_shot : (index + 1) * per_shot]
            ]
            start = frames[0]
            end = frames[1] if len(frames) > 1 else start
            sets.append(KeyframeSet(shot_number=shot.shot_number, start=start, end=end))
        return sets

    @staticmethod
    def _keyframe(shot: Shot, material: Material, next_number: Optional[int]) -> Keyframe:
        path = material.path if material.is_usable else None
        return Keyframe(
            shot_number=shot.shot_number,
            path=path,
            url=f"./keyframes/{Path(path).name}" if material.status is MaterialStatus.GENERATED else path,
            prompt=material.prompt,
            # Only the closing frame of an A/B pair links to the next shot.
            next_shot_number=next_number if material.label in (None, "B") else None,
            timestamp=f"{shot.start_time:.2f}",
        )
