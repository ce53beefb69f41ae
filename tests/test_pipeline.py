"""Regression tests for the MusicVideoGenerator pipeline."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from mvgen.checkpoint import CheckpointManager
from mvgen.config import PipelineConfig
from mvgen.pipeline import STEP_ORDER, MusicVideoGenerator
from mvgen.services.factory import ServiceBundle
from mvgen.services.mock import MockImageGenerator, MockTextGenerator, MockVideoGenerator
from mvgen.types import MaterialStatus, PipelineError


def _create_dummy_song(directory: Path) -> Path:
    """Create a small file that stands in for an audio track."""
    directory.mkdir(parents=True, exist_ok=True)
    audio_path = directory / "song.mp3"
    audio_path.write_bytes(b"ID3 dummy audio content")
    (directory / "song.txt").write_text("Twinkle twinkle little star", encoding="utf-8")
    return audio_path


class PipelineIntegrationTest(unittest.TestCase):
    """Covers the top-level pipeline behaviour."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.config = PipelineConfig(
            input_dir=str(self.root / "input"),
            output_dir=str(self.root / "output"),
            temp_dir=str(self.root / "temp"),
            runs_dir=str(self.root / "runs"),
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_pipeline_run(self) -> None:
        """Ensure the pipeline runs end-to-end with the offline backends."""
        _create_dummy_song(self.root / "input")
        generator = MusicVideoGenerator(config=self.config)

        state = generator.run(duration_sec=20.0)

        self.assertEqual(state.lyrics, "Twinkle twinkle little star")
        self.assertEqual([shot.time_range for shot in state.shots], ["0.00-8.00", "8.00-16.00", "16.00-20.00"])
        self.assertTrue(all(shot.video_prompt for shot in state.shots))
        self.assertEqual(len(state.keyframes), 3)
        self.assertTrue(all(m.status is MaterialStatus.GENERATED for m in state.materials))
        self.assertIsNone(state.final_video)
        self.assertTrue(Path(state.manifest_path).exists())

        report = json.loads(Path(state.report_path).read_text(encoding="utf-8"))
        self.assertEqual(report["video_summary"]["text"], "3/3 generated")
        self.assertEqual(report["music_analysis"]["rhythm"]["bpm"], 120)
        self.assertEqual(report["composition_manifest"], state.manifest_path)

        checkpoints = CheckpointManager(self.config.runs_dir, state.run_id)
        self.assertTrue(all(checkpoints.is_completed(step) for step in STEP_ORDER))
        self.assertTrue((Path(self.config.runs_dir) / state.run_id / "GenVideoClips-response.json").exists())

    def test_resume_skips_completed_steps(self) -> None:
        audio_path = _create_dummy_song(self.root / "input")
        first = MusicVideoGenerator(config=self.config).run(audio_path=str(audio_path), duration_sec=16.0)
        CheckpointManager(self.config.runs_dir, first.run_id).clear_after("GenKeyframes", STEP_ORDER)

        # Keyframes would all fail if they were regenerated.
        services = ServiceBundle(
            text=MockTextGenerator(),
            image=MockImageGenerator(fail_when=lambda path: True),
            video=MockVideoGenerator(),
        )
        resumed = MusicVideoGenerator(config=self.config, services=services).run(resume_run_id=first.run_id)

        self.assertEqual(resumed.run_id, first.run_id)
        self.assertTrue(all(m.status is MaterialStatus.GENERATED for m in resumed.keyframe_materials))
        self.assertEqual(len(resumed.materials), 2)
        self.assertTrue(all(m.status is MaterialStatus.GENERATED for m in resumed.materials))
        self.assertTrue(Path(resumed.report_path).exists())

    def test_failed_clip_is_composed_from_its_keyframe(self) -> None:
        audio_path = _create_dummy_song(self.root / "input")
        services = ServiceBundle(
            text=MockTextGenerator(),
            image=MockImageGenerator(),
            video=MockVideoGenerator(fail_when=lambda path: Path(path).name == "shot_2.mp4"),
        )

        state = MusicVideoGenerator(config=self.config, services=services).run(
            audio_path=str(audio_path), duration_sec=24.0
        )

        self.assertEqual(state.materials[1].status, MaterialStatus.KEYFRAME_FALLBACK)
        manifest = json.loads(Path(state.manifest_path).read_text(encoding="utf-8"))
        self.assertEqual([clip["type"] for clip in manifest["clips"]], ["video", "image", "video"])

    def test_missing_audio_is_fatal(self) -> None:
        generator = MusicVideoGenerator(config=self.config)
        with self.assertRaises(PipelineError):
            generator.run(duration_sec=10.0)


if __name__ == "__main__":
    unittest.main()
