"""Stage definitions.

A stage is one named unit of pipeline work. Command stages run one or more
external commands in order; a quality gate stage waits, with a bound, for an
external pass/fail verdict. Stages are immutable and run in declaration order.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from src.config import TIMEOUTS
from src.utils.validation import validate_report_path


class StageDefinitionError(ValueError):
    """Raised when a stage or stage sequence is malformed."""


class StageKind(str, Enum):
    COMMAND = "command"
    QUALITY_GATE = "quality_gate"


class StageStatus(str, Enum):
    """Outcome of a single stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    NOT_RUN = "not_run"


class RunStatus(str, Enum):
    """Overall status of a pipeline run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class FailureKind(str, Enum):
    """Error taxonomy for recorded failures."""

    STAGE_PROCESS_FAILURE = "stage_process_failure"
    GATE_TIMEOUT = "gate_timeout"
    ENVIRONMENT_FAILURE = "environment_failure"


Command = Tuple[str, ...]


def _normalize_commands(commands: Iterable[Sequence[str]]) -> Tuple[Command, ...]:
    out = []
    for cmd in commands:
        if isinstance(cmd, str):
            raise StageDefinitionError("Commands must be argv sequences; use Stage.shell() for strings")
        argv = tuple(str(part) for part in cmd)
        if not argv or not argv[0].strip():
            raise StageDefinitionError("Commands must be non-empty argv sequences")
        out.append(argv)
    return tuple(out)


@dataclass(frozen=True)
class Stage:
    name: str
    commands: Tuple[Command, ...] = ()
    continue_on_failure: bool = False
    kind: StageKind = StageKind.COMMAND
    reports: Tuple[str, ...] = ()
    timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise StageDefinitionError("Stage name must be a non-empty string")

        object.__setattr__(self, "kind", StageKind(self.kind))
        object.__setattr__(self, "commands", _normalize_commands(self.commands))
        try:
            reports = tuple(validate_report_path(r) for r in self.reports)
        except ValueError as e:
            raise StageDefinitionError(f"Stage '{self.name}': {e}") from e
        object.__setattr__(self, "reports", reports)

        if self.timeout_seconds is not None and float(self.timeout_seconds) <= 0:
            raise StageDefinitionError(f"Stage '{self.name}': timeout must be > 0")

        if self.kind is StageKind.COMMAND and not self.commands:
            raise StageDefinitionError(f"Stage '{self.name}' has no commands")

        if self.kind is StageKind.QUALITY_GATE:
            if self.commands:
                raise StageDefinitionError(f"Quality gate stage '{self.name}' must not define commands")
            if self.timeout_seconds is None:
                raise StageDefinitionError(f"Quality gate stage '{self.name}' needs a timeout")

    @property
    def is_quality_gate(self) -> bool:
        return self.kind is StageKind.QUALITY_GATE

    @classmethod
    def shell(
        cls,
        name: str,
        *lines: str,
        continue_on_failure: bool = False,
        reports: Sequence[str] = (),
        timeout_seconds: Optional[float] = None,
    ) -> "Stage":
        """Build a command stage from shell-like lines.

        Lines are split with POSIX rules. No shell is spawned, so pipes,
        redirects and globbing are not available.
        """
        commands = []
        for line in lines:
            try:
                commands.append(tuple(shlex.split(line)))
            except ValueError as e:
                raise StageDefinitionError(f"Stage '{name}': cannot parse command {line!r}: {e}")
        return cls(
            name=name,
            commands=tuple(commands),
            continue_on_failure=continue_on_failure,
            reports=tuple(reports),
            timeout_seconds=timeout_seconds,
        )

    @classmethod
    def quality_gate(
        cls,
        name: str = "Quality Gate",
        *,
        timeout_seconds: float = TIMEOUTS.QUALITY_GATE,
        continue_on_failure: bool = True,
    ) -> "Stage":
        return cls(
            name=name,
            kind=StageKind.QUALITY_GATE,
            continue_on_failure=continue_on_failure,
            timeout_seconds=timeout_seconds,
        )

    def describe(self) -> str:
        """One-line human description (commands are not redacted here)."""
        if self.is_quality_gate:
            body = f"wait for quality gate (timeout {self.timeout_seconds:g}s)"
        else:
            body = " && ".join(shlex.join(cmd) for cmd in self.commands)
        flag = " [tolerant]" if self.continue_on_failure else ""
        return f"{self.name}{flag}: {body}"


def validate_stage_sequence(stages: Sequence[Stage]) -> Tuple[Stage, ...]:
    """Return stages as a tuple after checking the sequence is runnable."""
    out = tuple(stages)
    if not out:
        raise StageDefinitionError("Pipeline needs at least one stage")

    seen = set()
    for stage in out:
        if not isinstance(stage, Stage):
            raise StageDefinitionError(f"Not a Stage: {stage!r}")
        if stage.name in seen:
            raise StageDefinitionError(f"Duplicate stage name: {stage.name}")
        seen.add(stage.name)
    return out
