"""Per-run logs of what each node sent to a backend and what came back."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from ..engine.summary import summarize
from ..types import Material, MaterialStatus
from .files import ensure_dir, write_json, write_text


@dataclass(slots=True)
class StepLogPaths:
    """Log files of one step inside a run directory."""

    prompt_path: Path
    response_path: Path
    materials_path: Path


class RunLogger:
    """Persists step logs under ``runs/<run_id>``.

    Layout for one run::

        runs/<run_id>/<step>-prompt.txt
        runs/<run_id>/<step>-response.json
        runs/<run_id>/<step>-materials.json    (generation stages only)
        runs/<run_id>/checkpoint.json          (written by CheckpointManager)
    """

    def __init__(self, base_dir: str | Path = "runs") -> None:
        self._base_dir = ensure_dir(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def run_dir(self, run_id: str) -> Path:
        return ensure_dir(self._base_dir / run_id)

    def step_paths(self, run_id: str, step_name: str) -> StepLogPaths:
        run_root = self.run_dir(run_id)
        return StepLogPaths(
            prompt_path=run_root / f"{step_name}-prompt.txt",
            response_path=run_root / f"{step_name}-response.json",
            materials_path=run_root / f"{step_name}-materials.json",
        )

    def log_prompt(self, run_id: str, step_name: str, prompt: str) -> None:
        write_text(self.step_paths(run_id, step_name).prompt_path, prompt)

    def log_response(self, run_id: str, step_name: str, response: Any) -> None:
        write_json(self.step_paths(run_id, step_name).response_path, response)

    def log_materials(self, run_id: str, step_name: str, materials: Sequence[Material]) -> Path:
        """Record a stage's outcome: counts plus every shot that did not generate."""
        summary = summarize(materials)
        problems = [
            {
                "shot_number": material.shot_number,
                "label": material.label,
                "status": material.status.value,
                "error": material.error,
                "fallback": material.path if material.status is MaterialStatus.KEYFRAME_FALLBACK else None,
            }
            for material in materials
            if material.status is not MaterialStatus.GENERATED
        ]
        path = self.step_paths(run_id, step_name).materials_path
        write_json(path, {"summary": str(summary), "counts": summary.counts, "problems": problems})
        return path
