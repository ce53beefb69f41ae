"""Core data models used across the music video pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional


class MaterialType(str, Enum):
    """Output modality of a material."""

    VIDEO = "video"
    IMAGE = "image"


class MaterialStatus(str, Enum):
    """Lifecycle states of a material within one stage."""

    PENDING = "pending"
    GENERATED = "generated"
    FAILED = "failed"
    KEYFRAME_FALLBACK = "keyframe_fallback"


class MaterialStateError(RuntimeError):
    """Raised when a material is moved through an illegal transition."""


class PipelineError(RuntimeError):
    """A failure that aborts the whole run rather than a single shot."""


class StoryboardError(PipelineError):
    """The storyboard is missing or cannot be turned into shots."""


class CompositionError(PipelineError):
    """The final video cannot be composed."""


@dataclass(slots=True)
class Shot:
    """Storyboard shot definition."""

    shot_number: int
    start_time: float
    end_time: float
    time_range: str = ""
    framing: Optional[str] = None
    composition: Optional[str] = None
    lighting: Optional[str] = None
    movement: Optional[str] = None
    action: Optional[str] = None
    sync_point: Optional[str] = None
    beat_point: Optional[float] = None
    transition: Optional[Dict[str, Any]] = None
    keyframe_prompt: Optional[str] = None
    video_prompt: Optional[str] = None
    prompt: Optional[str] = None
    character_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.end_time <= self.start_time:
            raise ValueError(
                f"Shot {self.shot_number} has end_time {self.end_time} <= start_time {self.start_time}"
            )
        if not self.time_range:
            self.time_range = format_time_range(self.start_time, self.end_time)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Shot":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(slots=True)
class Material:
    """Per-shot result record produced by a generation stage.

    A material starts ``pending`` and is moved exactly once into a terminal
    state by the unit-of-work wrapper that owns it. The only chained step is
    ``failed`` -> ``keyframe_fallback`` when a fallback artifact is substituted.
    """

    shot_number: int
    time_range: str
    start_time: float
    end_time: float
    type: MaterialType
    path: Optional[str] = None
    status: MaterialStatus = MaterialStatus.PENDING
    prompt: Optional[str] = None
    error: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def for_shot(cls, shot: Shot, media_type: MaterialType, label: Optional[str] = None) -> "Material":
        """Create a pending material bound to ``shot``."""
        return cls(
            shot_number=shot.shot_number,
            time_range=shot.time_range,
            start_time=shot.start_time,
            end_time=shot.end_time,
            type=media_type,
            label=label,
        )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def is_terminal(self) -> bool:
        return self.status is not MaterialStatus.PENDING

    @property
    def is_usable(self) -> bool:
        """True when the material carries an artifact a composer can consume."""
        return self.path is not None and self.status in (
            MaterialStatus.GENERATED,
            MaterialStatus.KEYFRAME_FALLBACK,
        )

    def mark_generated(self, path: str, prompt: Optional[str] = None) -> None:
        self._require(MaterialStatus.PENDING, MaterialStatus.GENERATED)
        self.path = path
        self.prompt = prompt
        self.error = None
        self.status = MaterialStatus.GENERATED

    def mark_failed(self, error: str, prompt: Optional[str] = None) -> None:
        self._require(MaterialStatus.PENDING, MaterialStatus.FAILED)
        self.path = None
        self.error = error
        if prompt is not None:
            self.prompt = prompt
        self.status = MaterialStatus.FAILED

    def use_fallback(self, path: str) -> None:
        self._require(MaterialStatus.FAILED, MaterialStatus.KEYFRAME_FALLBACK)
        self.path = path
        self.type = MaterialType.IMAGE
        self.status = MaterialStatus.KEYFRAME_FALLBACK

    def _require(self, expected: MaterialStatus, target: MaterialStatus) -> None:
        if self.status is not expected:
            raise MaterialStateError(
                f"Material for shot {self.shot_number} cannot move from "
                f"{self.status.value} to {target.value}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shot_number": self.shot_number,
            "time_range": self.time_range,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "type": self.type.value,
            "path": self.path,
            "status": self.status.value,
            "prompt": self.prompt,
            "error": self.error,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Material":
        return cls(
            shot_number=int(data["shot_number"]),
            time_range=data.get("time_range", ""),
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            type=MaterialType(data.get("type", MaterialType.VIDEO.value)),
            path=data.get("path"),
            status=MaterialStatus(data.get("status", MaterialStatus.PENDING.value)),
            prompt=data.get("prompt"),
            error=data.get("error"),
            label=data.get("label"),
        )


@dataclass(slots=True)
class Keyframe:
    """A still image conditioning the video generation of one shot."""

    shot_number: int
    path: Optional[str]
    url: Optional[str] = None
    prompt: Optional[str] = None
    next_shot_number: Optional[int] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Keyframe":
        return cls(**data)


@dataclass(slots=True)
class KeyframeSet:
    """Start (A) and end (B) keyframes of a shot; both point to one frame in single mode."""

    shot_number: int
    start: Keyframe
    end: Keyframe

    @property
    def shared(self) -> bool:
        return self.start is self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shot_number": self.shot_number,
            "start": self.start.to_dict(),
            "end": None if self.shared else self.end.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyframeSet":
        start = Keyframe.from_dict(data["start"])
        end = Keyframe.from_dict(data["end"]) if data.get("end") else start
        return cls(shot_number=int(data["shot_number"]), start=start, end=end)


@dataclass(slots=True)
class MusicProfile:
    """Parsed music analysis and the visual concept derived from it."""

    duration_sec: float
    emotion: Dict[str, Any] = field(default_factory=dict)
    rhythm: Dict[str, Any] = field(default_factory=dict)
    theme: Dict[str, Any] = field(default_factory=dict)
    structure: List[Dict[str, Any]] = field(default_factory=list)
    climax: Dict[str, Any] = field(default_factory=dict)
    beat_points: List[float] = field(default_factory=list)
    style_name: str = ""
    primary_colors: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def bpm(self) -> Optional[float]:
        value = self.rhythm.get("bpm")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def beats_between(self, start: float, end: float) -> List[float]:
        """Beat points falling inside ``[start, end)``."""
        return [beat for beat in self.beat_points if start <= beat < end]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MusicProfile":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(slots=True)
class RunState:
    """Mutable state passed between nodes."""

    run_id: Optional[str] = None
    audio_path: Optional[str] = None
    lyrics: Optional[str] = None
    duration_sec: Optional[float] = None
    music: Optional[MusicProfile] = None
    raw_shots: List[Dict[str, Any]] = field(default_factory=list)
    shots: List[Shot] = field(default_factory=list)
    keyframe_materials: List[Material] = field(default_factory=list)
    keyframes: List[KeyframeSet] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    final_video: Optional[str] = None
    manifest_path: Optional[str] = None
    report_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "audio_path": self.audio_path,
            "lyrics": self.lyrics,
            "duration_sec": self.duration_sec,
            "music": self.music.to_dict() if self.music else None,
            "raw_shots": self.raw_shots,
            "shots": [shot.to_dict() for shot in self.shots],
            "keyframe_materials": [material.to_dict() for material in self.keyframe_materials],
            "keyframes": [keyframe.to_dict() for keyframe in self.keyframes],
            "materials": [material.to_dict() for material in self.materials],
            "final_video": self.final_video,
            "manifest_path": self.manifest_path,
            "report_path": self.report_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunState":
        music = data.get("music")
        return cls(
            run_id=data.get("run_id"),
            audio_path=data.get("audio_path"),
            lyrics=data.get("lyrics"),
            duration_sec=data.get("duration_sec"),
            music=MusicProfile.from_dict(music) if music else None,
            raw_shots=list(data.get("raw_shots") or []),
            shots=[Shot.from_dict(item) for item in data.get("shots") or []],
            keyframe_materials=[Material.from_dict(item) for item in data.get("keyframe_materials") or []],
            keyframes=[KeyframeSet.from_dict(item) for item in data.get("keyframes") or []],
            materials=[Material.from_dict(item) for item in data.get("materials") or []],
            final_video=data.get("final_video"),
            manifest_path=data.get("manifest_path"),
            report_path=data.get("report_path"),
        )


def format_time_range(start: float, end: float) -> str:
    """Render a shot time range the way storyboards display it."""
    return f"{start:.2f}-{end:.2f}"
