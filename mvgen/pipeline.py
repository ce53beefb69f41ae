"""Pipeline orchestration for the music video generator."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.runnables import RunnableLambda
from langgraph.graph import END, START, StateGraph

from .checkpoint import CheckpointManager
from .config import PipelineConfig
from .nodes.analyze import AnalyzeMusic
from .nodes.base import Node
from .nodes.compose import ComposeVideo
from .nodes.keyframes import GenKeyframes
from .nodes.report import ReportNode
from .nodes.storyboard import ExpandShots, PlanShots
from .nodes.video import GenVideoClips
from .services.factory import ServiceBundle, build_services
from .types import PipelineError, RunState
from .utils.files import json_default
from .utils.media import find_audio_file, find_lyrics_file
from .utils.run_logger import RunLogger

logger = logging.getLogger(__name__)

STEP_ORDER = (
    "AnalyzeMusic",
    "PlanShots",
    "ExpandShots",
    "GenKeyframes",
    "GenVideoClips",
    "ComposeVideo",
    "Report",
)


class MusicVideoGenerator:
    """High-level facade exposing the end-to-end generation flow."""

    def __init__(self, config: PipelineConfig | None = None, services: ServiceBundle | None = None) -> None:
        self.config = config or PipelineConfig.from_env()
        self.logger = RunLogger(base_dir=self.config.runs_dir)
        # Clients are built once and shared by every run of this instance.
        self.services = services or build_services(self.config)

    def run(
        self,
        *,
        audio_path: str | None = None,
        lyrics_path: str | None = None,
        duration_sec: float | None = None,
        resume_run_id: str | None = None,
    ) -> RunState:
        """Blocking wrapper around :meth:`arun`."""
        return asyncio.run(
            self.arun(
                audio_path=audio_path,
                lyrics_path=lyrics_path,
                duration_sec=duration_sec,
                resume_run_id=resume_run_id,
            )
        )

    async def arun(
        self,
        *,
        audio_path: str | None = None,
        lyrics_path: str | None = None,
        duration_sec: float | None = None,
        resume_run_id: str | None = None,
    ) -> RunState:
        """Execute the pipeline and return the resulting state."""
        run_id = resume_run_id or self._new_run_id()
        checkpoints = CheckpointManager(self.config.runs_dir, run_id)

        state: Optional[RunState] = checkpoints.restore_state() if resume_run_id else None
        if state is None:
            if resume_run_id:
                logger.warning("No checkpoint found for run %s; starting from scratch", run_id)
            state = self._initial_state(run_id, audio_path, lyrics_path, duration_sec)

        nodes = [
            node
            for node in self._build_nodes(run_id)
            if not (resume_run_id and checkpoints.is_completed(node.name))
        ]
        if resume_run_id:
            logger.info("Resuming run %s at %s", run_id, nodes[0].name if nodes else "the end")
        if not nodes:
            return state

        app = self._build_graph(nodes, checkpoints).compile()
        result = await app.ainvoke(self._as_updates(state))
        return RunState(**result) if isinstance(result, dict) else result

    def _initial_state(
        self,
        run_id: str,
        audio_path: str | None,
        lyrics_path: str | None,
        duration_sec: float | None,
    ) -> RunState:
        input_dir = Path(self.config.input_dir)
        if audio_path is None and input_dir.is_dir():
            found = find_audio_file(input_dir)
            audio_path = str(found) if found else None
        if audio_path is None or not Path(audio_path).is_file():
            raise PipelineError(f"No audio file found (looked for {audio_path or input_dir}).")

        if lyrics_path is None and input_dir.is_dir():
            found_lyrics = find_lyrics_file(input_dir, audio_path)
            lyrics_path = str(found_lyrics) if found_lyrics else None
        lyrics = Path(lyrics_path).read_text(encoding="utf-8") if lyrics_path else None

        logger.info("Run %s: audio=%s lyrics=%s", run_id, audio_path, lyrics_path or "none")
        return RunState(run_id=run_id, audio_path=audio_path, lyrics=lyrics, duration_sec=duration_sec)

    def _build_graph(self, nodes: Sequence[Node], checkpoints: CheckpointManager) -> StateGraph:
        """Construct a LangGraph graph wired with runnable nodes."""
        graph = StateGraph(RunState)
        node_names: List[str] = []

        for node in nodes:

            async def _step(state: Any, *, _node: Node = node) -> Dict[str, Any]:
                current = state if isinstance(state, RunState) else RunState(**state)
                updated = await self._invoke_node(_node, current)
                checkpoints.save_step(_node.name, updated)
                return self._as_updates(updated)

            graph.add_node(
                node.name,
                RunnableLambda(_step),
                metadata={"kind": node.name, "may_block": node.name in {"GenKeyframes", "GenVideoClips"}},
            )
            node_names.append(node.name)

        graph.add_edge(START, node_names[0])
        for previous, current in zip(node_names, node_names[1:]):
            graph.add_edge(previous, current)
        graph.add_edge(node_names[-1], END)
        return graph

    def _build_nodes(self, run_id: str) -> Sequence[Node]:
        """Construct node instances wired with the current services."""
        config = self.config
        services = self.services
        concurrency = config.stage_concurrency
        return [
            AnalyzeMusic(
                run_id=run_id,
                logger=self.logger,
                text=services.text,
                shot_duration_sec=config.shot_duration_sec,
            ),
            PlanShots(
                run_id=run_id,
                logger=self.logger,
                shot_duration_sec=config.shot_duration_sec,
                characters=services.characters,
            ),
            ExpandShots(
                run_id=run_id,
                logger=self.logger,
                text=services.text,
                concurrency=config.concurrency,
                characters=services.characters,
                timeout=config.item_timeout_sec,
            ),
            GenKeyframes(
                run_id=run_id,
                logger=self.logger,
                image=services.image,
                output_dir=config.output_dir,
                mode=config.keyframe_mode,
                concurrency=concurrency["keyframes"],
                start_index=config.start_index,
                batch_delay_sec=config.batch_delay_sec,
                timeout=config.item_timeout_sec,
                reference_image=config.reference_image,
                characters=services.characters,
            ),
            GenVideoClips(
                run_id=run_id,
                logger=self.logger,
                video=services.video,
                temp_dir=config.temp_dir,
                concurrency=concurrency["videos"],
                start_index=config.start_index,
                batch_delay_sec=config.batch_delay_sec,
                timeout=config.item_timeout_sec,
                characters=services.characters,
            ),
            ComposeVideo(
                run_id=run_id,
                logger=self.logger,
                output_dir=config.output_dir,
                temp_dir=config.temp_dir,
                dry_run=config.dry_run_compose,
            ),
            ReportNode(run_id=run_id, logger=self.logger, output_dir=config.output_dir),
        ]

    async def _invoke_node(self, node: Node, state: RunState) -> RunState:
        """Execute a node while emitting structured IO traces."""
        logger.debug("[%s] >> input:\n%s", node.name, self._dump(state))
        started = time.perf_counter()
        updated_state = await node.run(state)
        elapsed = time.perf_counter() - started
        logger.info("[%s] finished in %.2fs", node.name, elapsed)
        logger.debug("[%s] << output:\n%s", node.name, self._dump(updated_state))
        return updated_state

    def _dump(self, state: RunState) -> str:
        if not logger.isEnabledFor(logging.DEBUG):
            return ""
        return json.dumps(self._strip_empty(state.to_dict()), ensure_ascii=False, indent=2, default=json_default)

    def _strip_empty(self, value: Any) -> Any:
        """Recursively remove empty containers for cleaner logging."""
        if isinstance(value, dict):
            return {k: self._strip_empty(v) for k, v in value.items() if not self._is_empty(v)}
        if isinstance(value, list):
            return [self._strip_empty(item) for item in value if not self._is_empty(item)]
        return value

    @staticmethod
    def _is_empty(value: Any) -> bool:
        """Return True if the provided value is considered empty for logging."""
        if value is None:
            return True
        if isinstance(value, (str, bytes)) and value == "":
            return True
        if isinstance(value, (list, tuple, set, dict)) and len(value) == 0:
            return True
        return False

    @staticmethod
    def _as_updates(state: RunState) -> Dict[str, Any]:
        """Top-level fields of ``state`` as a LangGraph update, keeping nested objects intact."""
        return {field.name: getattr(state, field.name) for field in fields(state)}

    @staticmethod
    def _new_run_id() -> str:
        """Return a simple unique run identifier."""
        return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
