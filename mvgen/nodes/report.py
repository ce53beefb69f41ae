"""Final run report."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from ..engine.summary import summarize
from ..types import RunState
from ..utils.files import ensure_dir, write_json
from .base import BaseNode


class ReportNode(BaseNode):
    """Writes ``workflow_result_<run_id>.json`` describing the whole run."""

    def __init__(self, run_id: str, logger, output_dir: str | Path) -> None:
        super().__init__(name="Report", run_id=run_id, logger=logger)
        self._output_dir = ensure_dir(output_dir)

    async def run(self, state: RunState) -> RunState:
        keyframe_summary = summarize(state.keyframe_materials)
        video_summary = summarize(state.materials)
        report = {
            "run_id": self.run_id,
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "audio": state.audio_path,
            "duration_sec": state.duration_sec,
            "music_analysis": state.music.to_dict() if state.music else None,
            "shots": [shot.to_dict() for shot in state.shots],
            "keyframes": [keyframe_set.to_dict() for keyframe_set in state.keyframes],
            "keyframe_summary": {"text": str(keyframe_summary), **keyframe_summary.counts},
            "materials": [material.to_dict() for material in state.materials],
            "video_summary": {"text": str(video_summary), **video_summary.counts},
            "final_video": state.final_video,
            "composition_manifest": state.manifest_path,
        }
        report_path = self._output_dir / f"workflow_result_{self.run_id}.json"
        write_json(report_path, report)
        state.report_path = str(report_path)

        self.log_prompt("Generating final report.")
        self.log_response({"report_path": str(report_path), "videos": str(video_summary)})
        return state
