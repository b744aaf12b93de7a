from __future__ import annotations

import importlib.util
from pathlib import Path
from unittest.mock import patch

import pytest

from src.pipeline.quality_gate import StaticGateSource
from src.pipeline.result import PipelineResult, StageResult
from src.pipeline.stages import RunStatus, Stage, StageStatus


def _load_cli():
    path = Path(__file__).resolve().parents[1] / "scripts" / "run_pipeline.py"
    spec = importlib.util.spec_from_file_location("run_pipeline_cli", path)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def cli(monkeypatch):
    module = _load_cli()
    monkeypatch.setattr(module, "load_env_file_lenient", lambda: None)
    for key in ("SONAR_TOKEN", "KUBE_SERVER_URL", "KUBE_TOKEN", "PIPELINE_REPO_URL"):
        monkeypatch.delenv(key, raising=False)
    return module


@pytest.mark.unit
def test_dry_run_prints_plan_with_secrets_masked(cli, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("KUBE_TOKEN", "kube-s3cr3t")
    monkeypatch.setenv("KUBE_SERVER_URL", "https://cluster:6443")

    code = cli.main([str(tmp_path), "--repo-url", "https://git.example/app.git", "--dry-run"])

    out = capsys.readouterr().out
    assert code == 0
    assert "Git Checkout" in out
    assert "Verify Deployment" in out
    assert "kube-s3cr3t" not in out
    assert "--token" not in out


@pytest.mark.unit
def test_missing_repo_url_is_usage_error(cli, tmp_path):
    assert cli.main([str(tmp_path)]) == 2


@pytest.mark.unit
@pytest.mark.parametrize(
    "status,expected",
    [(RunStatus.SUCCEEDED, 0), (RunStatus.FAILED, 1), (RunStatus.ABORTED, 2)],
)
def test_exit_code_follows_run_status(cli, tmp_path, status, expected):
    result = PipelineResult(
        run_id="r1",
        status=status,
        stages=[StageResult(name="Compile", status=StageStatus.SUCCEEDED)],
    )

    with patch.object(cli, "run_pipeline", return_value=result) as mock_run:
        code = cli.main([str(tmp_path), "--repo-url", "https://git.example/app.git"])

    assert code == expected
    assert mock_run.call_args.kwargs["gate_source"] is None
    assert mock_run.call_args.kwargs["preflight"] is True


@pytest.mark.unit
def test_skip_quality_gate_and_no_preflight(cli, tmp_path):
    result = PipelineResult(run_id="r1", status=RunStatus.SUCCEEDED)

    with patch.object(cli, "run_pipeline", return_value=result) as mock_run:
        cli.main([str(tmp_path), "--repo-url", "u", "--skip-quality-gate", "--no-preflight", "--gate-timeout", "30"])

    kwargs = mock_run.call_args.kwargs
    assert isinstance(kwargs["gate_source"], StaticGateSource)
    assert kwargs["preflight"] is False
    assert "stages" not in kwargs
    assert mock_run.call_args.args[0].quality_gate_timeout == 30


@pytest.mark.unit
def test_interrupt_returns_130(cli, tmp_path):
    with patch.object(cli, "run_pipeline", side_effect=KeyboardInterrupt):
        assert cli.main([str(tmp_path), "--repo-url", "u"]) == 130


@pytest.mark.unit
def test_bad_report_path_is_usage_error(cli, tmp_path, capsys):
    def stages_with_escaping_report(settings):
        return [Stage(name="Scan", commands=(("trivy", "fs", "."),), reports=("../outside.html",))]

    with patch.object(cli, "default_stages", side_effect=stages_with_escaping_report), patch.object(
        cli, "run_pipeline"
    ) as mock_run:
        code = cli.main([str(tmp_path), "--repo-url", "u"])

    assert code == 2
    mock_run.assert_not_called()
    assert "Report path" in capsys.readouterr().out
