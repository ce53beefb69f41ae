"""Character library used to keep recurring characters consistent across shots."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..utils.files import read_json

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Character:
    name: str
    desc: str
    image: Optional[str] = None
    keywords: List[str] = field(default_factory=list)

    @property
    def prompt(self) -> str:
        return f"Character: {self.name} ({self.desc})"


class CharacterLibrary:
    """Loads characters from a JSON file and picks one per shot.

    The file holds a list of ``{"name", "desc", "image", "keywords"}`` objects;
    ``image`` is resolved relative to the JSON file.
    """

    def __init__(self, characters: List[Character]) -> None:
        if not characters:
            raise ValueError("Character library is empty.")
        self._characters = characters

    @classmethod
    def load(cls, path: str | Path) -> "CharacterLibrary":
        library_path = Path(path)
        base_dir = library_path.parent
        characters: List[Character] = []
        for entry in read_json(library_path):
            image = entry.get("image")
            if image:
                resolved = (base_dir / image).resolve()
                if not resolved.is_file():
                    logger.warning("Character %r image not found: %s", entry.get("name"), resolved)
                image = str(resolved)
            characters.append(
                Character(
                    name=entry["name"],
                    desc=entry.get("desc", ""),
                    image=image,
                    keywords=[str(keyword).lower() for keyword in entry.get("keywords", [])],
                )
            )
        return cls(characters)

    @property
    def characters(self) -> List[Character]:
        return list(self._characters)

    def get(self, name: Optional[str]) -> Optional[Character]:
        if not name:
            return None
        return next((character for character in self._characters if character.name == name), None)

    def select(self, description: Optional[str], shot_number: Optional[int] = None) -> Character:
        """Match keywords against the scene description, else rotate by shot number."""
        if description:
            lowered = description.lower()
            for character in self._characters:
                if any(keyword in lowered for keyword in character.keywords):
                    return character
        index = (shot_number - 1) % len(self._characters) if shot_number else 0
        return self._characters[index]
