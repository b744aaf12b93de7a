"""Pipeline run context.

This module defines a small, serializable state object for one pipeline run.

It stores only stable primitives to support inspection after the run. Tool
reports written into the workspace remain the source of truth for scan and
build details; the context only records where they are.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from loguru import logger

from src.pipeline.result import StageResult
from src.pipeline.stages import RunStatus, StageStatus
from src.utils.schema_validation import is_valid_pipeline_run, validate_pipeline_run

SCHEMA_VERSION = "1.0"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunContext:
    """Serializable state of a single run, discarded once the run is recorded."""

    workspace: Path
    run_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: str = field(default_factory=_utc_now_iso)

    status: RunStatus = RunStatus.RUNNING
    current_index: int = -1
    errors: List[str] = field(default_factory=list)

    checkpoints: Dict[str, str] = field(default_factory=dict)
    stage_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    degradations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.status is not RunStatus.RUNNING

    def mark_checkpoint(self, name: str) -> None:
        if not name.strip():
            return
        self.checkpoints[name] = _utc_now_iso()

    def record_stage_result(self, index: int, result: StageResult) -> None:
        self.current_index = index
        self.stage_results[result.name] = result.to_dict()

        if result.status in (StageStatus.FAILED, StageStatus.TIMED_OUT) and result.error:
            prefix = "tolerated" if result.tolerated else "failed"
            self.errors.append(f"[{prefix}] {result.name}: {result.error}")

    def finish(self, status: RunStatus) -> None:
        if status is RunStatus.RUNNING:
            raise ValueError("A run cannot finish in the running state")
        self.status = status

    def to_payload(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "run_id": self.run_id,
            "created_at": self.created_at,
            "workspace": str(self.workspace),
            "status": self.status.value,
            "current_index": int(self.current_index),
            "errors": list(self.errors),
            "checkpoints": dict(self.checkpoints),
            "stage_results": dict(self.stage_results),
            "degradations": list(self.degradations),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RunContext":
        workspace = Path(str(payload.get("workspace", ""))).expanduser().resolve()
        ctx = cls(workspace=workspace)

        run_id = payload.get("run_id")
        if isinstance(run_id, str) and run_id:
            ctx.run_id = run_id

        created_at = payload.get("created_at")
        if isinstance(created_at, str) and created_at:
            ctx.created_at = created_at

        try:
            ctx.status = RunStatus(payload.get("status", RunStatus.RUNNING.value))
        except ValueError:
            ctx.status = RunStatus.RUNNING

        index = payload.get("current_index")
        if isinstance(index, int):
            ctx.current_index = index

        errors = payload.get("errors")
        if isinstance(errors, list):
            ctx.errors = [str(e) for e in errors]

        checkpoints = payload.get("checkpoints")
        if isinstance(checkpoints, dict):
            ctx.checkpoints = {str(k): str(v) for k, v in checkpoints.items()}

        stage_results = payload.get("stage_results")
        if isinstance(stage_results, dict):
            ctx.stage_results = {str(k): dict(v) for k, v in stage_results.items() if isinstance(v, dict)}

        degradations = payload.get("degradations")
        if isinstance(degradations, list):
            ctx.degradations = [dict(d) for d in degradations if isinstance(d, dict)]

        return ctx

    def write_json(self, path: Path) -> Path:
        payload = self.to_payload()
        validate_pipeline_run(payload)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        return path

    @classmethod
    def read_json(cls, path: Path) -> Optional["RunContext"]:
        if not path.exists() or not path.is_file():
            return None

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            return None

        if not is_valid_pipeline_run(payload):
            logger.warning("Ignoring run record that does not match the schema: {}", path)
            return None

        return cls.from_payload(payload)
