"""Tests for the keyframe and video generation stages."""

from __future__ import annotations

import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from typing import List

from mvgen.engine.summary import summarize
from mvgen.nodes.keyframes import GenKeyframes, build_keyframe_prompt
from mvgen.nodes.video import GenVideoClips, build_video_prompt
from mvgen.services.mock import MockImageGenerator, MockVideoGenerator
from mvgen.types import MaterialStatus, MaterialType, MusicProfile, RunState, Shot
from mvgen.utils.run_logger import RunLogger


def _shots(count: int, shot_duration: float = 8.0) -> List[Shot]:
    return [
        Shot(
            shot_number=n,
            start_time=(n - 1) * shot_duration,
            end_time=n * shot_duration,
            keyframe_prompt=f"bear in a meadow, shot {n}",
            video_prompt=f"bear dances, shot {n}",
            action="bear waves",
        )
        for n in range(1, count + 1)
    ]


def _named(filename: str):
    return lambda path: Path(path).name == filename


class _CancellingVideo(MockVideoGenerator):
    """Video backend whose call for one clip aborts with ``CancelledError``."""

    def __init__(self, filename: str) -> None:
        super().__init__()
        self._filename = filename

    async def generate_video(self, prompt, output_path, reference_images=(), duration_sec=None) -> str:
        if Path(output_path).name == self._filename:
            raise asyncio.CancelledError()
        return await super().generate_video(prompt, output_path, reference_images, duration_sec)


class StageTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.logger = RunLogger(base_dir=self.root / "runs")
        self.music = MusicProfile(duration_sec=56.0, style_name="pastel", primary_colors=["#FFD166", "#118AB2"])

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def keyframe_node(self, **kwargs) -> GenKeyframes:
        options = {"image": MockImageGenerator(size=(64, 36)), "output_dir": self.root / "output", "concurrency": 3}
        options.update(kwargs)
        return GenKeyframes(run_id="r1", logger=self.logger, **options)

    def video_node(self, **kwargs) -> GenVideoClips:
        options = {"video": MockVideoGenerator(), "temp_dir": self.root / "temp", "concurrency": 3}
        options.update(kwargs)
        return GenVideoClips(run_id="r1", logger=self.logger, **options)


class KeyframeStageTest(StageTestCase):
    async def test_single_mode_generates_one_frame_per_shot(self) -> None:
        state = RunState(run_id="r1", shots=_shots(3), music=self.music)

        state = await self.keyframe_node().run(state)

        self.assertEqual(len(state.keyframe_materials), 3)
        self.assertTrue(all(m.status is MaterialStatus.GENERATED for m in state.keyframe_materials))
        self.assertEqual([k.shot_number for k in state.keyframes], [1, 2, 3])
        first = state.keyframes[0]
        self.assertTrue(first.shared)
        self.assertTrue(Path(first.start.path).is_file())
        self.assertEqual(first.start.url, "./keyframes/shot_1.png")
        self.assertEqual(first.start.next_shot_number, 2)
        self.assertIsNone(state.keyframes[-1].start.next_shot_number)
        self.assertEqual(state.keyframes[1].start.timestamp, "8.00")

    async def test_ab_mode_generates_start_and_end_frames(self) -> None:
        state = RunState(run_id="r1", shots=_shots(2), music=self.music)

        state = await self.keyframe_node(mode="ab").run(state)

        self.assertEqual([m.label for m in state.keyframe_materials], ["A", "B", "A", "B"])
        keyframe_set = state.keyframes[0]
        self.assertFalse(keyframe_set.shared)
        self.assertEqual(Path(keyframe_set.start.path).name, "shot_1_A.png")
        self.assertEqual(Path(keyframe_set.end.path).name, "shot_1_B.png")
        self.assertIsNone(keyframe_set.start.next_shot_number)
        self.assertEqual(keyframe_set.end.next_shot_number, 2)
        self.assertIsNone(state.keyframes[1].end.next_shot_number)

    async def test_failed_keyframe_uses_reference_image(self) -> None:
        reference = self.root / "reference.png"
        reference.write_bytes(b"png")
        node = self.keyframe_node(
            image=MockImageGenerator(size=(64, 36), fail_when=_named("shot_2.png")),
            reference_image=str(reference),
        )

        state = await node.run(RunState(run_id="r1", shots=_shots(3), music=self.music))

        failed = state.keyframe_materials[1]
        self.assertEqual(failed.status, MaterialStatus.KEYFRAME_FALLBACK)
        self.assertEqual(failed.path, str(reference))
        self.assertEqual(state.keyframes[1].start.url, str(reference))

    async def test_missing_keyframe_prompt_fails_only_that_shot(self) -> None:
        shots = _shots(3)
        shots[1].keyframe_prompt = None

        state = await self.keyframe_node().run(RunState(run_id="r1", shots=shots))

        statuses = [m.status for m in state.keyframe_materials]
        self.assertEqual(statuses, [MaterialStatus.GENERATED, MaterialStatus.FAILED, MaterialStatus.GENERATED])
        self.assertIn("missing required field keyframe_prompt", state.keyframe_materials[1].error)
        self.assertIsNone(state.keyframes[1].start.path)

    async def test_start_index_reuses_existing_frames(self) -> None:
        first = await self.keyframe_node().run(RunState(run_id="r1", shots=_shots(3)))
        reused_path = first.keyframes[0].start.path

        image = MockImageGenerator(size=(64, 36), fail_when=_named("shot_1.png"))
        state = await self.keyframe_node(image=image, start_index=1).run(RunState(run_id="r1", shots=_shots(3)))

        self.assertEqual(state.keyframe_materials[0].status, MaterialStatus.GENERATED)
        self.assertEqual(state.keyframe_materials[0].path, reused_path)
        self.assertTrue(all(m.status is MaterialStatus.GENERATED for m in state.keyframe_materials))

    def test_prompt_composition(self) -> None:
        shot = _shots(1)[0]
        prompt_b = build_keyframe_prompt(shot, "B", self.music, "Character: Bear (a brown bear)")
        self.assertIn("bear waves", prompt_b)
        self.assertIn("closing frame", prompt_b)
        self.assertIn("#FFD166", prompt_b)
        self.assertIn("Character: Bear", prompt_b)
        self.assertNotIn("bear waves", build_keyframe_prompt(shot, "A", self.music))


class VideoStageTest(StageTestCase):
    async def _keyframed_state(self, count: int) -> RunState:
        state = RunState(run_id="r1", shots=_shots(count), music=self.music)
        return await self.keyframe_node().run(state)

    async def test_failed_clip_falls_back_to_keyframe(self) -> None:
        state = await self._keyframed_state(7)
        node = self.video_node(video=MockVideoGenerator(fail_when=_named("shot_5.mp4")))

        with self.assertLogs("mvgen.nodes.base", level="INFO") as logs:
            state = await node.run(state)

        batches = [record.getMessage() for record in logs.records if "batch" in record.getMessage()]
        self.assertEqual(
            batches,
            [
                "[GenVideoClips] batch 1/3: shots 1, 2, 3",
                "[GenVideoClips] batch 2/3: shots 4, 5, 6",
                "[GenVideoClips] batch 3/3: shots 7",
            ],
        )
        summary = summarize(state.materials)
        self.assertEqual(summary.generated, 6)
        self.assertEqual(summary.fallbacks, 1)
        self.assertEqual([m.shot_number for m in state.materials], list(range(1, 8)))
        fallback = state.materials[4]
        self.assertEqual(fallback.status, MaterialStatus.KEYFRAME_FALLBACK)
        self.assertEqual(fallback.type, MaterialType.IMAGE)
        self.assertEqual(fallback.path, state.keyframes[4].start.path)
        self.assertIn("mock video failure", fallback.error)
        self.assertEqual(str(summary), "6/7 generated, 1 fallback")

        log = json.loads((self.root / "runs" / "r1" / "GenVideoClips-materials.json").read_text(encoding="utf-8"))
        self.assertEqual(log["summary"], "6/7 generated, 1 fallback")
        self.assertEqual([problem["shot_number"] for problem in log["problems"]], [5])
        self.assertEqual(log["problems"][0]["fallback"], fallback.path)

    async def test_client_raising_cancelled_error_still_settles_every_shot(self) -> None:
        state = await self._keyframed_state(3)

        state = await self.video_node(video=_CancellingVideo("shot_2.mp4")).run(state)

        self.assertTrue(all(m.is_terminal for m in state.materials))
        self.assertEqual(
            [m.status for m in state.materials],
            [MaterialStatus.GENERATED, MaterialStatus.KEYFRAME_FALLBACK, MaterialStatus.GENERATED],
        )
        self.assertEqual(state.materials[1].path, state.keyframes[1].start.path)
        self.assertEqual(state.materials[1].error, "CancelledError")

    async def test_single_shot(self) -> None:
        state = await self.video_node().run(await self._keyframed_state(1))

        self.assertEqual(len(state.materials), 1)
        material = state.materials[0]
        self.assertEqual(material.status, MaterialStatus.GENERATED)
        self.assertEqual(Path(material.path).name, "shot_1.mp4")
        self.assertIn("Duration: 8.0", Path(material.path).read_text(encoding="utf-8"))

    async def test_missing_video_prompt_falls_back(self) -> None:
        state = await self._keyframed_state(2)
        state.shots[0].video_prompt = None

        state = await self.video_node().run(state)

        self.assertEqual(state.materials[0].status, MaterialStatus.KEYFRAME_FALLBACK)
        self.assertIn("missing required field video_prompt", state.materials[0].error)
        self.assertEqual(state.materials[1].status, MaterialStatus.GENERATED)

    async def test_shot_without_keyframe_fails(self) -> None:
        shots = _shots(2)
        shots[0].keyframe_prompt = None
        state = await self.keyframe_node().run(RunState(run_id="r1", shots=shots))

        state = await self.video_node().run(state)

        self.assertEqual(state.materials[0].status, MaterialStatus.FAILED)
        self.assertIsNone(state.materials[0].path)
        self.assertEqual(state.materials[1].status, MaterialStatus.GENERATED)

    async def test_ab_keyframes_are_passed_as_first_and_last_frame(self) -> None:
        state = RunState(run_id="r1", shots=_shots(1), music=self.music)
        state = await self.keyframe_node(mode="ab").run(state)

        state = await self.video_node().run(state)

        content = Path(state.materials[0].path).read_text(encoding="utf-8")
        self.assertIn("shot_1_A.png", content)
        self.assertIn("shot_1_B.png", content)

    async def test_no_shots(self) -> None:
        state = await self.video_node().run(RunState(run_id="r1"))
        self.assertEqual(state.materials, [])

    def test_video_prompt_requires_field(self) -> None:
        shot = _shots(1)[0]
        shot.video_prompt = None
        with self.assertRaises(ValueError):
            build_video_prompt(shot)


if __name__ == "__main__":
    unittest.main()
