"""Generate-with-fallback wrapper around one remote generation call."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from ..types import Material
from .outcome import Failure, Outcome, Success, describe_error, with_timeout

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GenerationRequest:
    """Payload handed to a remote generation client for one item."""

    prompt: str
    output_path: str
    reference_images: List[str] = field(default_factory=list)
    duration_sec: Optional[float] = None


class GenerationTask(Protocol):
    """Stage-specific work for a single material."""

    def validate(self) -> None:
        """Raise when required inputs (e.g. keyframe files) are missing."""
        ...

    def build_request(self) -> GenerationRequest:
        """Raise when the payload cannot be built (e.g. a missing shot field)."""
        ...

    async def execute(self, request: GenerationRequest) -> str:
        """Invoke the remote client and return the produced artifact path."""
        ...


async def attempt(task: GenerationTask, *, timeout: Optional[float] = None) -> Outcome:
    """Run validate -> build -> execute and fold every exception into a ``Failure``."""
    prompt: Optional[str] = None
    try:
        task.validate()
        request = task.build_request()
        prompt = request.prompt
        path = await with_timeout(lambda: task.execute(request), timeout)
    except asyncio.CancelledError as exc:
        # Only a cancelled run propagates; a client raising it on its own is an item failure.
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
        return Failure(error=describe_error(exc), prompt=prompt)
    except Exception as exc:  # noqa: BLE001 - isolation boundary for one item
        return Failure(error=describe_error(exc), prompt=prompt)
    return Success(path=str(path), prompt=prompt)


async def generate_with_fallback(
    material: Material,
    task: GenerationTask,
    *,
    fallback_path: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Outcome:
    """Drive ``material`` from pending to a terminal state; never raises.

    On failure the material records the error and, when ``fallback_path``
    points at an existing file, is downgraded to an image referencing it.
    """
    outcome = await attempt(task, timeout=timeout)
    tag = _tag(material)

    if isinstance(outcome, Success):
        material.mark_generated(outcome.path, outcome.prompt)
        logger.info("%s generated: %s", tag, outcome.path)
        return outcome

    material.mark_failed(outcome.error, outcome.prompt)
    logger.warning("%s failed: %s", tag, outcome.error)
    if fallback_path and os.path.exists(fallback_path):
        material.use_fallback(fallback_path)
        logger.warning("%s using fallback image %s", tag, fallback_path)
    return outcome


def _tag(material: Material) -> str:
    suffix = f" [{material.label}]" if material.label else ""
    return f"Shot {material.shot_number}{suffix}"
