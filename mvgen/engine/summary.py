"""Aggregate reporting over a stage's materials."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable

from ..types import Material, MaterialStatus


@dataclass(frozen=True, slots=True)
class StageSummary:
    total: int
    counts: Dict[str, int]

    @property
    def generated(self) -> int:
        return self.counts.get(MaterialStatus.GENERATED.value, 0)

    @property
    def fallbacks(self) -> int:
        return self.counts.get(MaterialStatus.KEYFRAME_FALLBACK.value, 0)

    @property
    def failed(self) -> int:
        return self.counts.get(MaterialStatus.FAILED.value, 0)

    def __str__(self) -> str:
        text = f"{self.generated}/{self.total} generated"
        if self.fallbacks:
            text += f", {self.fallbacks} fallback"
        if self.failed:
            text += f", {self.failed} failed"
        return text


def summarize(materials: Iterable[Material]) -> StageSummary:
    items = list(materials)
    counts = Counter(material.status.value for material in items)
    return StageSummary(total=len(items), counts=dict(counts))
