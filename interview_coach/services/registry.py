"""
Interview Coach: Pipeline Registry

Maps session_id → AnalysisPipeline, one per WebSocket connection.  Closed
sessions leave their summary behind (bounded) so `/session/{id}` can still
answer after the socket is gone.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, Optional

from .pipeline import AnalysisPipeline

logger = logging.getLogger("coach.registry")

MAX_FINISHED = 50


class PipelineRegistry:
    def __init__(self, max_finished: int = MAX_FINISHED) -> None:
        self._pipelines: Dict[str, AnalysisPipeline] = {}
        self._finished: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._max_finished = max_finished

    def create(self, session_id: Optional[str] = None, **kwargs: Any) -> AnalysisPipeline:
        pipeline = AnalysisPipeline(session_id=session_id, **kwargs)
        if pipeline.session_id in self._pipelines:
            raise ValueError(f"Session {pipeline.session_id} already registered")
        self._pipelines[pipeline.session_id] = pipeline
        logger.info(f"PipelineRegistry: created {pipeline.session_id} (total: {len(self._pipelines)})")
        return pipeline

    def record_summary(self, session_id: str, summary: Dict[str, Any]) -> None:
        self._finished[session_id] = summary
        self._finished.move_to_end(session_id)
        while len(self._finished) > self._max_finished:
            self._finished.popitem(last=False)

    async def close(self, session_id: str) -> None:
        pipeline = self._pipelines.pop(session_id, None)
        if pipeline is None:
            return
        await pipeline.close()
        if pipeline.last_summary is not None:
            self.record_summary(session_id, pipeline.last_summary.to_dict())
        logger.info(f"PipelineRegistry: removed {session_id} (total: {len(self._pipelines)})")

    async def close_all(self) -> None:
        for sid in list(self._pipelines.keys()):
            await self.close(sid)

    def get(self, session_id: str) -> Optional[AnalysisPipeline]:
        return self._pipelines.get(session_id)

    def finished_summary(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._finished.get(session_id)

    @property
    def active_count(self) -> int:
        return len(self._pipelines)

    @property
    def all_pipelines(self) -> Dict[str, AnalysisPipeline]:
        return dict(self._pipelines)
