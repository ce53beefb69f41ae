"""Utilities for loading reusable prompt templates."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def load_prompt(name: str, variables: Mapping[str, object] | None = None) -> str:
    """Return the rendered prompt text for ``name`` using optional placeholders.

    Unknown placeholders are left untouched so templates can be rendered in
    several passes.
    """
    path = PROMPTS_DIR / f"{name}.txt"
    template = path.read_text(encoding="utf-8")
    if not variables:
        return template

    if not isinstance(variables, Mapping):
        raise TypeError("variables must be a mapping of placeholder -> value")

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, template)


def join_parts(*parts: object, sep: str = ", ") -> str:
    """Join the non-empty string forms of ``parts``."""
    return sep.join(str(part).strip() for part in parts if part not in (None, "") and str(part).strip())


__all__ = ["PROMPTS_DIR", "join_parts", "load_prompt"]
