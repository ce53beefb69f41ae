"""Task used to adopt artifacts left on disk by an earlier run."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..engine.unit_of_work import GenerationRequest


@dataclass(slots=True)
class ReuseArtifact:
    """Succeeds with ``path`` when it already exists; nothing is generated."""

    path: str

    def validate(self) -> None:
        if not Path(self.path).is_file():
            raise FileNotFoundError(f"No artifact from a previous run at {self.path}")

    def build_request(self) -> GenerationRequest:
        return GenerationRequest(prompt=f"reuse {Path(self.path).name}", output_path=self.path)

    async def execute(self, request: GenerationRequest) -> str:
        return request.output_path
