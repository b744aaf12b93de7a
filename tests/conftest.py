from __future__ import annotations

import sys
from concurrent.futures import Future
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.pipeline.executor import CommandResult, ToolNotFoundError  # noqa: E402
from src.pipeline.quality_gate import StaticGateSource  # noqa: E402
from src.pipeline.runner import PipelineRunner  # noqa: E402
from src.pipeline.stages import Stage  # noqa: E402


class ScriptedExecutor:
    """Executor double that returns scripted exit codes keyed by argv[0].

    Every call appends ("start", argv) and ("end", argv) to ``events`` so tests
    can check that invocations never overlap.
    """

    def __init__(
        self,
        returncodes: Optional[Dict[str, int]] = None,
        *,
        missing: Sequence[str] = (),
        outputs: Optional[Dict[str, Tuple[str, str]]] = None,
        on_run=None,
    ):
        self.returncodes = dict(returncodes or {})
        self.missing = set(missing)
        self.outputs = dict(outputs or {})
        self.on_run = on_run
        self.calls: List[Tuple[str, ...]] = []
        self.events: List[Tuple[str, Tuple[str, ...]]] = []
        self.envs: List[Dict[str, str]] = []

    @property
    def programs(self) -> List[str]:
        return [argv[0] for argv in self.calls]

    def run(self, argv, *, cwd, env, timeout_seconds=None) -> CommandResult:
        argv = tuple(argv)
        self.events.append(("start", argv))
        try:
            if argv[0] in self.missing:
                raise ToolNotFoundError(f"Executable not found: {argv[0]}")
            self.calls.append(argv)
            self.envs.append(dict(env))
            if self.on_run is not None:
                self.on_run(argv, Path(cwd))
            stdout, stderr = self.outputs.get(argv[0], (f"ran {argv[0]}\n", ""))
            return CommandResult(
                returncode=self.returncodes.get(argv[0], 0),
                stdout=stdout,
                stderr=stderr,
                duration_seconds=0.01,
            )
        finally:
            self.events.append(("end", argv))


class NeverGateSource:
    """Gate source whose verdict never arrives."""

    def __init__(self) -> None:
        self.futures: List[Future] = []

    def request(self, workspace: Path) -> Future:
        future: Future = Future()
        self.futures.append(future)
        return future


def numbered_stages(count: int, *, tolerant: Sequence[int] = ()) -> List[Stage]:
    """Stages 'stage-1'..'stage-N', each running a tool named 'tool-<i>'."""
    return [
        Stage(name=f"stage-{i}", commands=((f"tool-{i}", "--run"),), continue_on_failure=i in tolerant)
        for i in range(1, count + 1)
    ]


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def make_runner(workspace: Path):
    def _make(executor=None, gate_source=None, **kwargs) -> PipelineRunner:
        return PipelineRunner(
            workspace=workspace,
            executor=executor or ScriptedExecutor(),
            gate_source=gate_source or StaticGateSource(True),
            env=kwargs.pop("env", {"PATH": "/usr/bin"}),
            **kwargs,
        )

    return _make
