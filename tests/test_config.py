"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
import unittest
from unittest import mock

from mvgen.config import ConfigError, PipelineConfig


class PipelineConfigTest(unittest.TestCase):
    def test_defaults_are_offline(self) -> None:
        config = PipelineConfig()
        self.assertEqual((config.text_backend, config.image_backend, config.video_backend), ("mock", "mock", "mock"))
        self.assertTrue(config.dry_run_compose)
        self.assertEqual(config.stage_concurrency, {"keyframes": 3, "videos": 3})

    def test_stage_overrides(self) -> None:
        config = PipelineConfig(concurrency=4, video_concurrency=2)
        self.assertEqual(config.stage_concurrency, {"keyframes": 4, "videos": 2})

    def test_rejects_invalid_values(self) -> None:
        for kwargs in (
            {"concurrency": 0},
            {"keyframe_concurrency": 0},
            {"start_index": -1},
            {"batch_delay_sec": -1.0},
            {"item_timeout_sec": 0},
            {"shot_duration_sec": 0},
            {"keyframe_mode": "triple"},
            {"video_backend": "sora"},
        ):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ConfigError):
                    PipelineConfig(**kwargs)

    def test_from_env(self) -> None:
        env = {
            "MVGEN_CONCURRENCY": "5",
            "MVGEN_VIDEO_CONCURRENCY": "2",
            "MVGEN_START_INDEX": "3",
            "MVGEN_BATCH_DELAY_SEC": "1.5",
            "MVGEN_ITEM_TIMEOUT_SEC": "90",
            "MVGEN_KEYFRAME_MODE": "AB",
            "MVGEN_VIDEO_BACKEND": "Jimeng",
            "MVGEN_DRY_RUN_COMPOSE": "false",
            "JIMENG_API_KEY": "ak:sk",
        }
        with mock.patch("mvgen.config.load_dotenv"), mock.patch.dict(os.environ, env, clear=True):
            config = PipelineConfig.from_env()

        self.assertEqual(config.concurrency, 5)
        self.assertEqual(config.stage_concurrency, {"keyframes": 5, "videos": 2})
        self.assertEqual(config.start_index, 3)
        self.assertEqual(config.batch_delay_sec, 1.5)
        self.assertEqual(config.item_timeout_sec, 90.0)
        self.assertEqual(config.keyframe_mode, "ab")
        self.assertEqual(config.video_backend, "jimeng")
        self.assertFalse(config.dry_run_compose)
        self.assertEqual(config.jimeng_api_key, "ak:sk")

    def test_from_env_rejects_bad_concurrency(self) -> None:
        with mock.patch("mvgen.config.load_dotenv"), mock.patch.dict(os.environ, {"MVGEN_CONCURRENCY": "0"}, clear=True):
            with self.assertRaises(ConfigError):
                PipelineConfig.from_env()


if __name__ == "__main__":
    unittest.main()
