"""Input discovery and ffprobe helpers."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".flac", ".aac", ".ogg")
LYRICS_EXTENSIONS = (".txt", ".lrc")
COMMON_LYRICS_NAMES = ("lyrics.txt", "lyrics.lrc", "歌词.txt")
DEFAULT_DURATION_SEC = 30.0

logger = logging.getLogger(__name__)


def find_audio_file(input_dir: str | Path) -> Optional[Path]:
    """Return the first audio file in ``input_dir`` (sorted by name)."""
    directory = Path(input_dir)
    for candidate in sorted(directory.iterdir()):
        if candidate.is_file() and candidate.suffix.lower() in AUDIO_EXTENSIONS:
            return candidate
    return None


def find_lyrics_file(input_dir: str | Path, audio_path: str | Path | None = None) -> Optional[Path]:
    """Locate lyrics: same stem as the audio, then common names, then any text file."""
    directory = Path(input_dir)
    if audio_path is not None:
        stem = Path(audio_path).stem
        for ext in LYRICS_EXTENSIONS:
            candidate = directory / f"{stem}{ext}"
            if candidate.is_file():
                return candidate

    for name in COMMON_LYRICS_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate

    for candidate in sorted(directory.iterdir()):
        if candidate.is_file() and candidate.suffix.lower() in LYRICS_EXTENSIONS:
            return candidate
    return None


def ffmpeg_available(binary: str = "ffmpeg") -> bool:
    return shutil.which(binary) is not None


def media_duration(audio_path: str | Path, default: float = DEFAULT_DURATION_SEC) -> float:
    """Return the media duration in seconds, or ``default`` when ffprobe cannot tell."""
    if not ffmpeg_available("ffprobe"):
        logger.warning("ffprobe not found; assuming %.0fs audio duration", default)
        return default

    cmd = [
        "ffprobe",
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        str(audio_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        logger.warning("ffprobe failed for %s; assuming %.0fs", audio_path, default)
        return default

    try:
        info = json.loads(result.stdout or "{}")
        duration = float(info.get("format", {}).get("duration"))
    except (TypeError, ValueError):
        logger.warning("ffprobe returned no duration for %s; assuming %.0fs", audio_path, default)
        return default
    return duration if duration > 0 else default
