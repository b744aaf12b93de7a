from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.pipeline.context import RunContext
from src.pipeline.result import CommandRecord, StageResult
from src.pipeline.stages import FailureKind, RunStatus, StageStatus


@pytest.mark.unit
def test_mark_checkpoint_ignores_blank_name(tmp_path: Path) -> None:
    ctx = RunContext(workspace=tmp_path)
    ctx.mark_checkpoint(" ")
    ctx.mark_checkpoint("")
    assert ctx.checkpoints == {}


@pytest.mark.unit
def test_mark_checkpoint_sets_timestamp(tmp_path: Path) -> None:
    ctx = RunContext(workspace=tmp_path)
    ctx.mark_checkpoint("start")
    assert "start" in ctx.checkpoints
    assert isinstance(ctx.checkpoints["start"], str)


@pytest.mark.unit
def test_record_stage_result_tracks_index_and_errors(tmp_path: Path) -> None:
    ctx = RunContext(workspace=tmp_path)

    ctx.record_stage_result(0, StageResult(name="Git Checkout", status=StageStatus.SUCCEEDED))
    ctx.record_stage_result(
        1,
        StageResult(
            name="Secret Scan",
            status=StageStatus.FAILED,
            tolerated=True,
            failure_kind=FailureKind.STAGE_PROCESS_FAILURE,
            error="'gitleaks' exited with status 1",
        ),
    )

    assert ctx.current_index == 1
    assert list(ctx.stage_results) == ["Git Checkout", "Secret Scan"]
    assert ctx.errors == ["[tolerated] Secret Scan: 'gitleaks' exited with status 1"]


@pytest.mark.unit
def test_finish_rejects_running(tmp_path: Path) -> None:
    ctx = RunContext(workspace=tmp_path)
    assert not ctx.finished

    with pytest.raises(ValueError):
        ctx.finish(RunStatus.RUNNING)

    ctx.finish(RunStatus.FAILED)
    assert ctx.finished


@pytest.mark.unit
def test_payload_round_trip(tmp_path: Path) -> None:
    ctx = RunContext(workspace=tmp_path)
    ctx.mark_checkpoint("start")
    ctx.record_stage_result(
        0,
        StageResult(
            name="Compile",
            status=StageStatus.SUCCEEDED,
            commands=[CommandRecord(argv=("mvn", "compile"), returncode=0, stdout="ok", stderr="", duration_seconds=1.5)],
        ),
    )
    ctx.finish(RunStatus.SUCCEEDED)

    out = ctx.write_json(tmp_path / ".pipeline" / "pipeline_run.json")
    loaded = RunContext.read_json(out)

    assert loaded is not None
    assert loaded.run_id == ctx.run_id
    assert loaded.status is RunStatus.SUCCEEDED
    assert loaded.stage_results["Compile"]["commands"][0]["argv"] == ["mvn", "compile"]
    assert loaded.checkpoints == ctx.checkpoints


@pytest.mark.unit
def test_write_json_validates_payload(tmp_path: Path) -> None:
    ctx = RunContext(workspace=tmp_path)
    ctx.stage_results["bad"] = {"name": "bad", "status": "exploded", "tolerated": False, "commands": []}

    with pytest.raises(ValueError, match="status"):
        ctx.write_json(tmp_path / "run.json")
    assert not (tmp_path / "run.json").exists()


@pytest.mark.unit
def test_read_json_handles_missing_and_invalid(tmp_path: Path) -> None:
    assert RunContext.read_json(tmp_path / "missing.json") is None

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    assert RunContext.read_json(bad) is None

    not_obj = tmp_path / "list.json"
    not_obj.write_text(json.dumps([1, 2]), encoding="utf-8")
    assert RunContext.read_json(not_obj) is None


@pytest.mark.unit
def test_read_json_ignores_record_with_wrong_shape(tmp_path: Path) -> None:
    ctx = RunContext(workspace=tmp_path)
    ctx.finish(RunStatus.SUCCEEDED)
    payload = ctx.to_payload()
    payload["status"] = "exploded"
    del payload["run_id"]

    out = tmp_path / "pipeline_run.json"
    out.write_text(json.dumps(payload), encoding="utf-8")

    assert RunContext.read_json(out) is None


@pytest.mark.unit
def test_from_payload_tolerates_unknown_status(tmp_path: Path) -> None:
    ctx = RunContext.from_payload({"workspace": str(tmp_path), "status": "weird", "run_id": "abc"})

    assert ctx.run_id == "abc"
    assert ctx.status is RunStatus.RUNNING
