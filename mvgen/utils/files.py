"""File system helpers shared across the pipeline."""

from __future__ import annotations

import base64
import json
import mimetypes
import os
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any


def ensure_dir(path: str | Path) -> Path:
    """Create the directory if it does not exist."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def read_binary(path: str | Path) -> bytes:
    """Read binary content from a file."""
    with open(path, "rb") as handle:
        return handle.read()


def write_text(path: str | Path, content: str) -> Path:
    """Write UTF-8 text to disk."""
    target = Path(path)
    ensure_dir(target.parent)
    target.write_text(content, encoding="utf-8")
    return target


def json_default(obj: Any) -> Any:
    """Serializer for dataclasses, enums, paths and sets."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, tuple)):
        return list(obj)
    return str(obj)


def write_json(path: str | Path, data: Any) -> Path:
    """Serialize a Python object as JSON to disk."""
    payload = json.dumps(data, indent=2, ensure_ascii=False, default=json_default)
    return write_text(path, payload)


def read_json(path: str | Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def b64encode(data: bytes) -> str:
    """Encode bytes to a base64 string without newlines."""
    return base64.b64encode(data).decode("utf-8")


def b64decode_to_bytes(data: str) -> bytes:
    """Decode a base64 string into bytes."""
    return base64.b64decode(data.encode("utf-8"))


def guess_mime_type(path: str | Path, default: str = "application/octet-stream") -> str:
    """Best-effort MIME type for images, audio and video on disk."""
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or default


def atomic_write(path: str | Path, content: bytes) -> Path:
    """Write binary content to disk atomically.

    Readers never observe a half-written artifact at ``path``.
    """
    target = Path(path)
    ensure_dir(target.parent)
    temp_path = target.with_suffix(target.suffix + ".tmp")
    with open(temp_path, "wb") as handle:
        handle.write(content)
    os.replace(temp_path, target)
    return target
