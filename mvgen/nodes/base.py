"""Node abstractions shared by concrete pipeline steps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ..engine.summary import summarize
from ..types import Material, RunState
from ..utils.run_logger import RunLogger

logger = logging.getLogger(__name__)


class Node(Protocol):
    """A step that mutates the shared run state."""

    name: str

    async def run(self, state: RunState) -> RunState:
        ...


@dataclass(slots=True)
class BaseNode:
    """Convenience base for nodes needing logging support."""

    name: str
    run_id: str
    logger: RunLogger

    def log_prompt(self, prompt: str) -> None:
        """Persist the prompt."""
        self.logger.log_prompt(self.run_id, self.name, prompt)

    def log_response(self, response: object) -> None:
        """Persist the response."""
        self.logger.log_response(self.run_id, self.name, response)

    def log_batch_start(self, batch: Sequence[Any], batch_number: int, total_batches: int) -> None:
        shots = ", ".join(str(getattr(item, "shot_number", "?")) for item in batch)
        logger.info("[%s] batch %d/%d: shots %s", self.name, batch_number, total_batches, shots)

    def log_summary(self, materials: Sequence[Material]) -> None:
        logger.info("[%s] %s", self.name, summarize(materials))
        self.logger.log_materials(self.run_id, self.name, materials)
