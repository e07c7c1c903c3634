"""Persistent execution log.

Each execution is stored as one JSON document, rewritten on every
transition, so the log stays auditable after the orchestrator restarts.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.types import Stage
from delivery_pipeline.orchestrator.execution import PipelineExecution

logger = logging.getLogger(__name__)


class LocalExecutionStore:
    """File-backed execution store using atomic write-then-rename.

    Layout::

        {base_dir}/{pipeline_name}/{execution_id}.json

    Records are returned as plain dictionaries (the ``to_dict`` form of
    :class:`PipelineExecution`).
    """

    def __init__(self, base_dir: str | Path, pipeline_name: str = "default") -> None:
        self._dir = Path(base_dir) / pipeline_name
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, execution_id: str) -> Path:
        return self._dir / f"{execution_id}.json"

    def save(self, execution: PipelineExecution) -> None:
        target = self._path_for(execution.id)
        data = json.dumps(execution.to_dict(), indent=2)
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path_str = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
            tmp_path = Path(tmp_path_str)
            try:
                with os.fdopen(fd, "w") as handle:
                    handle.write(data)
                tmp_path.replace(target)
            except BaseException:
                tmp_path.unlink(missing_ok=True)
                raise

    def load(self, execution_id: str) -> dict[str, Any] | None:
        target = self._path_for(execution_id)
        if not target.exists():
            return None
        return json.loads(target.read_text())

    def list(self) -> list[dict[str, Any]]:
        """Return every stored record ordered by trigger sequence."""
        if not self._dir.exists():
            return []
        records = [json.loads(path.read_text()) for path in self._dir.glob("*.json")]
        return sorted(records, key=lambda r: (r.get("sequence", 0), r.get("triggered_at", "")))

    def next_sequence(self) -> int:
        """First sequence number not used by a stored record."""
        records = self.list()
        return max((r.get("sequence", 0) for r in records), default=-1) + 1


class HistoryHooks:
    """Hooks that persist the execution snapshot at every lifecycle point."""

    def __init__(self, store: LocalExecutionStore) -> None:
        self._store = store

    @property
    def store(self) -> LocalExecutionStore:
        return self._store

    def before_execution(self, execution: PipelineExecution) -> None:
        self._store.save(execution)

    def on_stage_start(self, execution: PipelineExecution, stage: Stage) -> None:
        self._store.save(execution)

    def on_stage_complete(self, execution: PipelineExecution, result: StageResult) -> None:
        self._store.save(execution)

    def on_stage_failure(self, execution: PipelineExecution, result: StageResult) -> None:
        self._store.save(execution)

    def after_execution(self, execution: PipelineExecution) -> None:
        self._store.save(execution)

    def on_retrigger(self, previous: PipelineExecution, attempt: int, delay_seconds: float) -> None:
        pass
