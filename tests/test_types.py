"""Tests for the material state machine and serialisable models."""

from __future__ import annotations

import unittest

from mvgen.engine.summary import summarize
from mvgen.types import (
    Keyframe,
    KeyframeSet,
    Material,
    MaterialStateError,
    MaterialStatus,
    MaterialType,
    MusicProfile,
    RunState,
    Shot,
)


def _shot(number: int = 1, start: float = 0.0, end: float = 8.0) -> Shot:
    return Shot(shot_number=number, start_time=start, end_time=end, keyframe_prompt="a bear")


class ShotTest(unittest.TestCase):
    def test_time_range_and_duration(self) -> None:
        shot = _shot(2, 8.0, 12.5)
        self.assertEqual(shot.time_range, "8.00-12.50")
        self.assertAlmostEqual(shot.duration, 4.5)

    def test_rejects_empty_window(self) -> None:
        with self.assertRaises(ValueError):
            Shot(shot_number=1, start_time=4.0, end_time=4.0)

    def test_from_dict_ignores_unknown_keys(self) -> None:
        shot = Shot.from_dict({"shot_number": 1, "start_time": 0, "end_time": 8, "shotNumber": 1})
        self.assertEqual(shot.shot_number, 1)


class MaterialStateMachineTest(unittest.TestCase):
    def test_pending_to_generated(self) -> None:
        material = Material.for_shot(_shot(), MaterialType.VIDEO)
        self.assertFalse(material.is_terminal)

        material.mark_generated("temp/shot_1.mp4", "prompt")

        self.assertEqual(material.status, MaterialStatus.GENERATED)
        self.assertTrue(material.is_usable)

    def test_failed_to_fallback_switches_type(self) -> None:
        material = Material.for_shot(_shot(), MaterialType.VIDEO)
        material.mark_failed("RuntimeError: boom")
        self.assertFalse(material.is_usable)

        material.use_fallback("output/keyframes/shot_1.png")

        self.assertEqual(material.status, MaterialStatus.KEYFRAME_FALLBACK)
        self.assertEqual(material.type, MaterialType.IMAGE)
        self.assertEqual(material.error, "RuntimeError: boom")
        self.assertTrue(material.is_usable)

    def test_terminal_states_are_final(self) -> None:
        material = Material.for_shot(_shot(), MaterialType.VIDEO)
        material.mark_generated("temp/shot_1.mp4")

        with self.assertRaises(MaterialStateError):
            material.mark_failed("late error")
        with self.assertRaises(MaterialStateError):
            material.use_fallback("shot_1.png")

    def test_fallback_requires_failure_first(self) -> None:
        material = Material.for_shot(_shot(), MaterialType.VIDEO)
        with self.assertRaises(MaterialStateError):
            material.use_fallback("shot_1.png")

    def test_round_trip(self) -> None:
        material = Material.for_shot(_shot(), MaterialType.IMAGE, label="A")
        material.mark_failed("boom", "prompt")
        restored = Material.from_dict(material.to_dict())
        self.assertEqual(restored.status, MaterialStatus.FAILED)
        self.assertEqual(restored.label, "A")
        self.assertEqual(restored.prompt, "prompt")


class KeyframeSetTest(unittest.TestCase):
    def test_single_mode_shares_one_frame(self) -> None:
        frame = Keyframe(shot_number=1, path="shot_1.png")
        keyframe_set = KeyframeSet(shot_number=1, start=frame, end=frame)

        data = keyframe_set.to_dict()
        restored = KeyframeSet.from_dict(data)

        self.assertIsNone(data["end"])
        self.assertTrue(restored.shared)
        self.assertEqual(restored.end.path, "shot_1.png")

    def test_ab_mode_keeps_distinct_frames(self) -> None:
        keyframe_set = KeyframeSet(
            shot_number=1,
            start=Keyframe(shot_number=1, path="shot_1_A.png"),
            end=Keyframe(shot_number=1, path="shot_1_B.png"),
        )
        restored = KeyframeSet.from_dict(keyframe_set.to_dict())
        self.assertFalse(restored.shared)
        self.assertEqual(restored.end.path, "shot_1_B.png")


class MusicProfileTest(unittest.TestCase):
    def test_bpm_and_beats(self) -> None:
        profile = MusicProfile(duration_sec=16.0, rhythm={"bpm": "120"}, beat_points=[0.5, 7.5, 8.0, 12.0])
        self.assertEqual(profile.bpm, 120.0)
        self.assertEqual(profile.beats_between(0.0, 8.0), [0.5, 7.5])

    def test_unparseable_bpm(self) -> None:
        self.assertIsNone(MusicProfile(duration_sec=1.0, rhythm={"bpm": "fast"}).bpm)


class RunStateTest(unittest.TestCase):
    def test_round_trip_preserves_nested_models(self) -> None:
        shot = _shot()
        material = Material.for_shot(shot, MaterialType.VIDEO)
        material.mark_generated("temp/shot_1.mp4")
        frame = Keyframe(shot_number=1, path="shot_1.png")
        state = RunState(
            run_id="r1",
            duration_sec=8.0,
            music=MusicProfile(duration_sec=8.0, style_name="pastel"),
            shots=[shot],
            keyframes=[KeyframeSet(shot_number=1, start=frame, end=frame)],
            materials=[material],
            manifest_path="output/composition_r1.json",
        )

        restored = RunState.from_dict(state.to_dict())

        self.assertEqual(restored.music.style_name, "pastel")
        self.assertEqual(restored.shots[0].keyframe_prompt, "a bear")
        self.assertTrue(restored.keyframes[0].shared)
        self.assertEqual(restored.materials[0].status, MaterialStatus.GENERATED)
        self.assertEqual(restored.manifest_path, "output/composition_r1.json")


class SummaryTest(unittest.TestCase):
    def test_counts_and_text(self) -> None:
        materials = [Material.for_shot(_shot(n, n * 8.0, n * 8.0 + 8.0), MaterialType.VIDEO) for n in range(3)]
        materials[0].mark_generated("a.mp4")
        materials[1].mark_failed("boom")
        materials[1].use_fallback("b.png")
        materials[2].mark_failed("boom")

        summary = summarize(materials)

        self.assertEqual(summary.total, 3)
        self.assertEqual(summary.generated, 1)
        self.assertEqual(str(summary), "1/3 generated, 1 fallback, 1 failed")


if __name__ == "__main__":
    unittest.main()
