"""Tests for per-run checkpoints."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from mvgen.checkpoint import CheckpointManager
from mvgen.pipeline import STEP_ORDER
from mvgen.types import RunState, Shot


class CheckpointManagerTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.runs_dir = Path(self._tmp.name)
        self.manager = CheckpointManager(self.runs_dir, "r1")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_fresh_checkpoint(self) -> None:
        self.assertFalse(self.manager.is_completed("AnalyzeMusic"))
        self.assertIsNone(self.manager.last_step)
        self.assertIsNone(self.manager.restore_state())

    def test_save_and_restore(self) -> None:
        state = RunState(run_id="r1", duration_sec=8.0, shots=[Shot(shot_number=1, start_time=0.0, end_time=8.0)])

        self.manager.save_step("PlanShots", state)

        self.assertEqual(self.manager.path, self.runs_dir / "r1" / "checkpoint.json")
        self.assertTrue(self.manager.is_completed("PlanShots"))
        self.assertEqual(self.manager.last_step, "PlanShots")
        restored = self.manager.restore_state()
        self.assertEqual(restored.shots[0].time_range, "0.00-8.00")

    def test_clear_after_forgets_later_steps(self) -> None:
        state = RunState(run_id="r1")
        for step in STEP_ORDER[:4]:
            self.manager.save_step(step, state)

        self.manager.clear_after("PlanShots", STEP_ORDER)

        self.assertTrue(self.manager.is_completed("PlanShots"))
        self.assertFalse(self.manager.is_completed("ExpandShots"))
        self.assertFalse(self.manager.is_completed("GenKeyframes"))
        self.assertEqual(self.manager.last_step, "PlanShots")

    def test_clear_after_unknown_step(self) -> None:
        with self.assertRaises(ValueError):
            self.manager.clear_after("Upload", STEP_ORDER)

    def test_unreadable_checkpoint_is_ignored(self) -> None:
        self.manager.path.write_text("{not json", encoding="utf-8")
        with self.assertLogs("mvgen.checkpoint", level="WARNING"):
            self.assertFalse(self.manager.is_completed("AnalyzeMusic"))

    def test_clear(self) -> None:
        self.manager.save_step("AnalyzeMusic", RunState(run_id="r1"))
        self.manager.clear()
        self.assertFalse(self.manager.path.exists())


if __name__ == "__main__":
    unittest.main()
