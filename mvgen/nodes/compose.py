"""Composition of shot materials and the audio track into the final video."""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from ..types import CompositionError, Material, MaterialType, RunState, Shot, format_time_range
from ..utils.files import ensure_dir, write_json
from ..utils.media import ffmpeg_available
from .base import BaseNode

logger = logging.getLogger(__name__)

FRAME_WIDTH = 1920
FRAME_HEIGHT = 1080
FRAME_RATE = 30
DEFAULT_CLIP_SEC = 10.0
_CLIP_NAME = re.compile(r"shot_(\d+)\.mp4$")


def build_color_filters(style: Optional[str]) -> Optional[str]:
    """Colour grade for the concatenated stream, keyed on the visual style name."""
    if not style:
        return None
    lowered = style.lower()
    filters = ["eq=contrast=1.1:brightness=0.05:saturation=1.1"]
    if "cyberpunk" in lowered or "赛博朋克" in lowered:
        filters += ["curves=preset=strong_contrast", "hue=s=1.2"]
    elif "vintage" in lowered or "复古" in lowered:
        filters += ["curves=preset=vintage", "eq=saturation=0.8"]
    elif "cinematic" in lowered or "电影" in lowered:
        filters += ["curves=preset=medium_contrast", "eq=gamma=1.1"]
    return ",".join(filters)


def select_inputs(materials: Sequence[Material]) -> List[Material]:
    """Usable materials whose file exists, ordered by shot number."""
    usable = [material for material in materials if material.is_usable and Path(material.path).is_file()]
    return sorted(usable, key=lambda material: material.shot_number)


def build_compose_command(
    materials: Sequence[Material],
    audio_path: str,
    output_path: str,
    style: Optional[str] = None,
    ffmpeg: str = "ffmpeg",
) -> List[str]:
    """ffmpeg argv that trims/loops each input, normalises, concatenates, grades and muxes audio."""
    if not materials:
        raise CompositionError("No materials to compose.")

    cmd = [ffmpeg, "-y"]
    for material in materials:
        duration = f"{material.duration:.3f}"
        if material.type is MaterialType.VIDEO:
            cmd += ["-t", duration, "-i", material.path]
        else:
            # Stills are looped for the whole shot.
            cmd += ["-loop", "1", "-t", duration, "-i", material.path]
    cmd += ["-i", audio_path]

    filters = [
        f"[{index}:v]scale={FRAME_WIDTH}:{FRAME_HEIGHT}:force_original_aspect_ratio=decrease,"
        f"pad={FRAME_WIDTH}:{FRAME_HEIGHT}:(ow-iw)/2:(oh-ih)/2,setpts=PTS-STARTPTS,fps={FRAME_RATE}[v{index}]"
        for index in range(len(materials))
    ]
    concat_inputs = "".join(f"[v{index}]" for index in range(len(materials)))
    filters.append(f"{concat_inputs}concat=n={len(materials)}:v=1:a=0[vconcat]")
    video_label = "[vconcat]"
    color_filters = build_color_filters(style)
    if color_filters:
        filters.append(f"[vconcat]{color_filters}[vfinal]")
        video_label = "[vfinal]"

    cmd += [
        "-filter_complex",
        ";".join(filters),
        "-map",
        video_label,
        "-map",
        f"{len(materials)}:a:0",
        "-c:v",
        "libx264",
        "-preset",
        "slow",
        "-crf",
        "18",
        "-c:a",
        "aac",
        "-b:a",
        "192k",
        "-shortest",
        "-movflags",
        "+faststart",
        "-pix_fmt",
        "yuv420p",
        output_path,
    ]
    return cmd


def load_materials_from_dir(directory: str | Path, shots: Sequence[Shot] = ()) -> List[Material]:
    """Rediscover generated clips named ``shot_<n>.mp4``, timed from ``shots`` when known."""
    root = Path(directory)
    if not root.is_dir():
        raise CompositionError(f"Clip directory does not exist: {root}")
    by_number = {shot.shot_number: shot for shot in shots}

    materials: List[Material] = []
    for candidate in root.iterdir():
        match = _CLIP_NAME.search(candidate.name)
        if not match or not candidate.is_file():
            continue
        shot_number = int(match.group(1))
        shot = by_number.get(shot_number)
        start = shot.start_time if shot else 0.0
        end = shot.end_time if shot else start + DEFAULT_CLIP_SEC
        material = Material(
            shot_number=shot_number,
            time_range=format_time_range(start, end),
            start_time=start,
            end_time=end,
            type=MaterialType.VIDEO,
        )
        material.mark_generated(str(candidate))
        materials.append(material)

    if not materials:
        raise CompositionError(f"No shot_<n>.mp4 clips found in {root}")
    return sorted(materials, key=lambda material: material.shot_number)


class ComposeVideo(BaseNode):
    """Composes the final music video, or writes a composition manifest in dry-run mode."""

    def __init__(
        self,
        run_id: str,
        logger,
        output_dir: str | Path,
        temp_dir: str | Path | None = None,
        dry_run: bool = True,
        ffmpeg: str = "ffmpeg",
    ) -> None:
        super().__init__(name="ComposeVideo", run_id=run_id, logger=logger)
        self._output_dir = ensure_dir(output_dir)
        self._temp_dir = Path(temp_dir) if temp_dir else None
        self._dry_run = dry_run
        self._ffmpeg = ffmpeg

    async def run(self, state: RunState) -> RunState:
        materials = state.materials
        if not materials and self._temp_dir is not None:
            logger.info("No in-memory materials; rediscovering clips in %s", self._temp_dir)
            materials = load_materials_from_dir(self._temp_dir, state.shots)

        inputs = select_inputs(materials)
        if not inputs:
            raise CompositionError("No usable materials to compose.")
        skipped = len(materials) - len(inputs)
        if skipped:
            logger.warning("Composing %d/%d shots; %d have no usable artifact", len(inputs), len(materials), skipped)

        style = state.music.style_name if state.music else None
        output_path = str(self._output_dir / f"music_video_{self.run_id}.mp4")
        audio_path = state.audio_path or ""
        cmd = build_compose_command(inputs, audio_path, output_path, style=style, ffmpeg=self._ffmpeg)
        self.log_prompt(" ".join(cmd))

        manifest = {
            "run_id": self.run_id,
            "output": output_path,
            "audio": state.audio_path,
            "style": style,
            "color_filters": build_color_filters(style),
            "clips": [
                {
                    "shot_number": material.shot_number,
                    "path": material.path,
                    "type": material.type.value,
                    "status": material.status.value,
                    "time_range": material.time_range,
                    "duration": round(material.duration, 3),
                }
                for material in inputs
            ],
            "command": cmd,
        }

        if self._dry_run:
            manifest_path = self._output_dir / f"composition_{self.run_id}.json"
            write_json(manifest_path, manifest)
            state.manifest_path = str(manifest_path)
            logger.info("Dry run: composition manifest written to %s", manifest_path)
            self.log_response({"dry_run": True, "manifest": str(manifest_path)})
            return state

        if not state.audio_path or not Path(state.audio_path).is_file():
            raise CompositionError(f"Audio track not found: {state.audio_path}")
        if not ffmpeg_available(self._ffmpeg):
            raise CompositionError("ffmpeg is required to compose the video. Please install ffmpeg and retry.")

        result = await asyncio.to_thread(subprocess.run, cmd, capture_output=True, text=True)
        if result.returncode != 0:
            tail = (result.stderr or result.stdout or "unknown error").strip()[-2000:]
            raise CompositionError(f"ffmpeg composition failed: {tail}")

        state.final_video = output_path
        logger.info("Final video written to %s", output_path)
        self.log_response({"final_video": output_path, "clips": manifest["clips"]})
        return state
