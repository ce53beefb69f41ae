"""Per-run checkpoints so an interrupted run can resume after its last completed step."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .types import RunState
from .utils.files import atomic_write, ensure_dir, json_default

logger = logging.getLogger(__name__)

COMPLETED = "completed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CheckpointManager:
    """Stores step statuses and the latest ``RunState`` snapshot in ``runs/<run_id>/checkpoint.json``."""

    def __init__(self, runs_dir: str | Path, run_id: str) -> None:
        self._path = ensure_dir(Path(runs_dir) / run_id) / "checkpoint.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, Any]:
        if self._path.is_file():
            try:
                return json.loads(self._path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                logger.warning("Ignoring unreadable checkpoint %s: %s", self._path, exc)
        return {"steps": {}, "last_step": None, "state": None, "created_at": _now(), "updated_at": None}

    def save_step(self, step: str, state: RunState, status: str = COMPLETED) -> None:
        checkpoint = self.load()
        checkpoint["steps"][step] = {"status": status, "timestamp": _now()}
        checkpoint["last_step"] = step
        checkpoint["state"] = state.to_dict()
        checkpoint["updated_at"] = _now()
        self._write(checkpoint)

    def is_completed(self, step: str) -> bool:
        return self.load()["steps"].get(step, {}).get("status") == COMPLETED

    @property
    def last_step(self) -> Optional[str]:
        return self.load().get("last_step")

    def restore_state(self) -> Optional[RunState]:
        """Return the state saved after the last completed step, if any."""
        snapshot = self.load().get("state")
        return RunState.from_dict(snapshot) if snapshot else None

    def clear_after(self, step: str, order: Sequence[str]) -> None:
        """Forget every step that follows ``step`` in ``order``."""
        if step not in order:
            raise ValueError(f"Unknown step {step!r}")
        checkpoint = self.load()
        for later in order[order.index(step) + 1 :]:
            checkpoint["steps"].pop(later, None)
        checkpoint["last_step"] = step
        checkpoint["updated_at"] = _now()
        self._write(checkpoint)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)

    def _write(self, checkpoint: Dict[str, Any]) -> None:
        payload = json.dumps(checkpoint, indent=2, ensure_ascii=False, default=json_default)
        atomic_write(self._path, payload.encode("utf-8"))
