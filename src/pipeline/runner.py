"""Pipeline runner.

Executes a fixed, linear list of stages on the calling thread. Each command is
attempted exactly once. A failing stage stops the run unless it is flagged
continue_on_failure; environment failures (missing tool, failed preflight,
workspace already locked) always abort.

Run records are filesystem-first: at the end of every run the context and the
degradation summary are written under the workspace state directory.
"""

from __future__ import annotations

import shlex
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from filelock import FileLock, Timeout
from loguru import logger

from src.config import TIMEOUTS, PipelineSettings, get_timeout
from src.pipeline.context import RunContext
from src.pipeline.defaults import default_stages
from src.pipeline.degradation import degradation_from_stage_result, write_degradation_summary
from src.pipeline.executor import (
    CommandExecutor,
    SubprocessExecutor,
    ToolNotFoundError,
    redact_argv,
    redact_text,
)
from src.pipeline.kubeconfig import temporary_kubeconfig
from src.pipeline.preflight import PipelineEnvironmentError, ensure_environment
from src.pipeline.quality_gate import QualityGateError, QualityGateSource, SonarQualityGateSource, wait_for_verdict
from src.pipeline.result import CommandRecord, PipelineResult, StageResult
from src.pipeline.stages import FailureKind, RunStatus, Stage, StageStatus, validate_stage_sequence
from src.tracing import safe_set_span_attributes, traced
from src.utils.subprocess_env import build_tool_env
from src.utils.validation import is_within, validate_workspace

RUN_RECORD_FILENAME = "pipeline_run.json"
LOCK_FILENAME = "run.lock"

Preflight = Callable[[Sequence[Stage]], None]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PipelineRunner:
    """Run stages in order against one workspace.

    Everything process-wide (workspace, credentials, secrets to redact) is
    passed in here; the runner never reads the ambient environment.
    """

    def __init__(
        self,
        *,
        workspace: Path,
        executor: CommandExecutor,
        gate_source: QualityGateSource,
        env: Optional[Mapping[str, str]] = None,
        secrets: Iterable[str] = (),
        state_dir: Optional[Path] = None,
        lock_timeout: float = get_timeout("file_lock"),
        write_records: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.workspace = Path(workspace)
        self.executor = executor
        self.gate_source = gate_source
        self.env: Dict[str, str] = dict(env) if env is not None else build_tool_env()
        self.secrets = [s for s in secrets if s]
        self.state_dir = Path(state_dir) if state_dir is not None else self.workspace / ".pipeline"
        self.lock_timeout = float(lock_timeout)
        self.write_records = write_records
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        *,
        executor: Optional[CommandExecutor] = None,
        gate_source: Optional[QualityGateSource] = None,
        **kwargs,
    ) -> "PipelineRunner":
        workspace = validate_workspace(settings.workspace)
        if gate_source is None:
            gate_source = SonarQualityGateSource(
                host_url=settings.sonar_host_url,
                token=settings.sonar_token,
                poll_interval=settings.quality_gate_poll_interval,
            )
        return cls(
            workspace=workspace,
            executor=executor or SubprocessExecutor(),
            gate_source=gate_source,
            env=build_tool_env(credentials=settings.credentials),
            secrets=settings.secret_values(),
            state_dir=workspace / settings.state_dirname,
            **kwargs,
        )

    def run(self, stages: Sequence[Stage], *, preflight: Optional[Preflight] = None) -> PipelineResult:
        stages = validate_stage_sequence(stages)
        ctx = RunContext(workspace=self.workspace)
        results = [StageResult(name=s.name, tolerated=s.continue_on_failure) for s in stages]
        started = self.clock()

        ctx.mark_checkpoint("start")
        logger.info("Pipeline run {} starting: {} stages in {}", ctx.run_id, len(stages), self.workspace)

        lock = FileLock(str(self.state_dir / LOCK_FILENAME), timeout=self.lock_timeout)
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            lock.acquire()
        except Timeout:
            msg = f"Workspace is locked by another run: {self.workspace}"
            logger.error(msg)
            ctx.errors.append(msg)
            ctx.finish(RunStatus.ABORTED)
            return self._result(ctx, results, started)

        try:
            with traced("pipeline.run", {"run.id": ctx.run_id, "run.stages": [s.name for s in stages]}) as span:
                status = self._run_stages(ctx, stages, results, preflight)
                ctx.finish(status)
                safe_set_span_attributes(span, {"run.status": status.value})
        finally:
            ctx.mark_checkpoint("end")
            if not ctx.finished:
                ctx.finish(RunStatus.ABORTED)
            for res in results:
                if res.name not in ctx.stage_results:
                    ctx.stage_results[res.name] = res.to_dict()
            self._finalize(ctx)
            lock.release()

        result = self._result(ctx, results, started)
        logger.info(
            "Pipeline run {} finished: {} in {:.1f}s",
            ctx.run_id,
            result.status.value,
            result.duration_seconds,
        )
        return result

    def _run_stages(
        self,
        ctx: RunContext,
        stages: Sequence[Stage],
        results: List[StageResult],
        preflight: Optional[Preflight],
    ) -> RunStatus:
        if preflight is not None:
            try:
                preflight(stages)
            except PipelineEnvironmentError as e:
                ctx.errors.append(str(e))
                ctx.errors.extend(e.problems)
                logger.error("Run aborted before any stage: {}", e)
                return RunStatus.ABORTED

        for index, stage in enumerate(stages):
            logger.info("Stage {}/{}: {}", index + 1, len(stages), stage.name)

            with traced("pipeline.stage", {"stage.name": stage.name, "stage.index": index}) as span:
                if stage.is_quality_gate:
                    res = self._run_gate_stage(stage)
                else:
                    res = self._run_command_stage(stage)
                safe_set_span_attributes(span, {"stage.status": res.status.value})

            results[index] = res
            ctx.record_stage_result(index, res)

            if res.succeeded:
                logger.info("Stage '{}' succeeded in {:.1f}s", stage.name, res.duration_seconds)
                continue

            if res.failure_kind is FailureKind.ENVIRONMENT_FAILURE:
                logger.error("Stage '{}' hit an environment failure: {}", stage.name, res.error)
                return RunStatus.ABORTED

            if res.tolerated:
                logger.warning("Stage '{}' {} (tolerated): {}", stage.name, res.status.value, res.error)
                event = degradation_from_stage_result(res)
                if event is not None:
                    ctx.degradations.append(event)
                continue

            logger.error("Stage '{}' {}: {}", stage.name, res.status.value, res.error)
            return RunStatus.FAILED

        return RunStatus.SUCCEEDED

    def _run_command_stage(self, stage: Stage) -> StageResult:
        res = StageResult(name=stage.name, tolerated=stage.continue_on_failure, started_at=_utc_now_iso())
        t0 = self.clock()
        res.status = StageStatus.SUCCEEDED

        for argv in stage.commands:
            shown = redact_argv(argv, self.secrets)
            logger.info("[{}] $ {}", stage.name, shlex.join(shown))

            try:
                out = self.executor.run(
                    argv,
                    cwd=self.workspace,
                    env=self.env,
                    timeout_seconds=stage.timeout_seconds,
                )
            except ToolNotFoundError as e:
                res.status = StageStatus.FAILED
                res.failure_kind = FailureKind.ENVIRONMENT_FAILURE
                res.tolerated = False
                res.error = str(e)
                break
            except Exception as e:
                logger.exception("[{}] executor raised while running '{}'", stage.name, argv[0])
                res.status = StageStatus.FAILED
                res.failure_kind = FailureKind.STAGE_PROCESS_FAILURE
                res.tolerated = False
                res.error = redact_text(f"'{argv[0]}' could not be run: {type(e).__name__}: {e}", self.secrets)
                break

            res.commands.append(
                CommandRecord(
                    argv=shown,
                    returncode=out.returncode,
                    stdout=redact_text(out.stdout, self.secrets),
                    stderr=redact_text(out.stderr, self.secrets),
                    duration_seconds=out.duration_seconds,
                    timed_out=out.timed_out,
                )
            )

            if not out.success:
                res.status = StageStatus.FAILED
                res.failure_kind = FailureKind.STAGE_PROCESS_FAILURE
                if out.timed_out:
                    res.error = f"'{argv[0]}' timed out after {stage.timeout_seconds:g}s"
                else:
                    res.error = f"'{argv[0]}' exited with status {out.returncode}"
                break

        res.reports = [
            r for r in stage.reports if is_within(self.workspace / r, self.workspace) and (self.workspace / r).exists()
        ]
        res.finished_at = _utc_now_iso()
        res.duration_seconds = max(0.0, self.clock() - t0)
        return res

    def _run_gate_stage(self, stage: Stage) -> StageResult:
        res = StageResult(name=stage.name, tolerated=stage.continue_on_failure, started_at=_utc_now_iso())
        t0 = self.clock()

        try:
            future = self.gate_source.request(self.workspace)
        except QualityGateError as e:
            res.status = StageStatus.FAILED
            res.failure_kind = FailureKind.STAGE_PROCESS_FAILURE
            res.error = str(e)
        except Exception as e:
            logger.exception("[{}] quality gate source raised", stage.name)
            res.status = StageStatus.FAILED
            res.failure_kind = FailureKind.STAGE_PROCESS_FAILURE
            res.error = f"Quality gate source failed: {type(e).__name__}: {e}"
        else:
            timeout = float(stage.timeout_seconds or TIMEOUTS.QUALITY_GATE)
            logger.info("[{}] waiting up to {:g}s for the quality gate verdict", stage.name, timeout)
            outcome = wait_for_verdict(future, timeout, clock=self.clock)
            res.gate_passed = outcome.passed

            if outcome.timed_out:
                res.status = StageStatus.TIMED_OUT
                res.failure_kind = FailureKind.GATE_TIMEOUT
                res.error = outcome.error
            elif outcome.passed is True:
                res.status = StageStatus.SUCCEEDED
            else:
                res.status = StageStatus.FAILED
                res.failure_kind = FailureKind.STAGE_PROCESS_FAILURE
                res.error = outcome.error or "Quality gate verdict: failed"

        res.finished_at = _utc_now_iso()
        res.duration_seconds = max(0.0, self.clock() - t0)
        return res

    def _finalize(self, ctx: RunContext) -> None:
        if not self.write_records:
            return
        try:
            ctx.write_json(self.state_dir / RUN_RECORD_FILENAME)
        except Exception:
            logger.exception("Failed to write run record for run_id='{}'", ctx.run_id)
        try:
            write_degradation_summary(
                state_dir=self.state_dir,
                run_id=ctx.run_id,
                workspace=self.workspace,
                degradations=list(ctx.degradations),
            )
        except Exception:
            logger.exception("Failed to write degradation summary for run_id='{}'", ctx.run_id)

    def _result(self, ctx: RunContext, results: List[StageResult], started: float) -> PipelineResult:
        return PipelineResult(
            run_id=ctx.run_id,
            status=ctx.status,
            stages=list(results),
            duration_seconds=max(0.0, self.clock() - started),
            errors=list(ctx.errors),
        )


def run_pipeline(
    settings: PipelineSettings,
    *,
    stages: Optional[Sequence[Stage]] = None,
    executor: Optional[CommandExecutor] = None,
    gate_source: Optional[QualityGateSource] = None,
    preflight: bool = True,
    which: Optional[Callable[[str], Optional[str]]] = None,
) -> PipelineResult:
    """Run the stock pipeline (or the given stages) for the configured workspace.

    The stock pipeline gets a kubeconfig written for this run when cluster
    credentials are configured.
    """

    runner = PipelineRunner.from_settings(settings, executor=executor, gate_source=gate_source)

    def _preflight(seq: Sequence[Stage]) -> None:
        if which is None:
            ensure_environment(seq, settings)
        else:
            ensure_environment(seq, settings, which=which)

    check = _preflight if preflight else None
    if stages is not None:
        return runner.run(list(stages), preflight=check)

    with temporary_kubeconfig(settings) as kubeconfig:
        return runner.run(default_stages(settings, kubeconfig=kubeconfig), preflight=check)
