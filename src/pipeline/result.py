"""Run results.

Plain, serializable records of what a run did. Stages that never ran are
present with status ``not_run`` so a result always enumerates the full stage
list in declaration order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from src.pipeline.stages import FailureKind, RunStatus, StageStatus

# Captured output kept per command in the run record.
MAX_OUTPUT_CHARS = 20000


def _tail(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"[... {len(text) - limit} chars truncated ...]\n" + text[-limit:]


@dataclass(frozen=True)
class CommandRecord:
    """One external command invocation, with secrets already redacted."""

    argv: Tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "argv": list(self.argv),
            "returncode": int(self.returncode),
            "stdout": _tail(self.stdout),
            "stderr": _tail(self.stderr),
            "duration_seconds": round(float(self.duration_seconds), 3),
            "timed_out": bool(self.timed_out),
        }


@dataclass
class StageResult:
    name: str
    status: StageStatus = StageStatus.NOT_RUN
    tolerated: bool = False
    failure_kind: Optional[FailureKind] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_seconds: float = 0.0
    commands: List[CommandRecord] = field(default_factory=list)
    gate_passed: Optional[bool] = None
    reports: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def attempted(self) -> bool:
        return self.status is not StageStatus.NOT_RUN

    @property
    def succeeded(self) -> bool:
        return self.status is StageStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "tolerated": bool(self.tolerated),
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(float(self.duration_seconds), 3),
            "commands": [c.to_dict() for c in self.commands],
            "gate_passed": self.gate_passed,
            "reports": list(self.reports),
            "error": self.error,
        }


@dataclass
class PipelineResult:
    run_id: str
    status: RunStatus
    stages: List[StageResult] = field(default_factory=list)
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        if self.status is RunStatus.SUCCEEDED:
            return 0
        if self.status is RunStatus.ABORTED:
            return 2
        return 1

    def stage(self, name: str) -> StageResult:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)

    def status_sequence(self) -> List[Tuple[str, StageStatus]]:
        return [(s.name, s.status) for s in self.stages]

    @property
    def failed_stage(self) -> Optional[StageResult]:
        """First failing stage that was not tolerated, if any."""
        for s in self.stages:
            if s.attempted and not s.succeeded and not s.tolerated:
                return s
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "success": self.success,
            "duration_seconds": round(float(self.duration_seconds), 3),
            "errors": list(self.errors),
            "stages": [s.to_dict() for s in self.stages],
        }
