"""
Tests for pipeline configuration and tool environments.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from src.config import TIMEOUTS, PipelineSettings, get_timeout, load_env_file_lenient
from src.utils.subprocess_env import build_tool_env


@pytest.mark.unit
class TestPipelineSettings:
    def test_from_env_collects_credentials(self, tmp_path):
        environ = {
            "SONAR_TOKEN": "sq",
            "KUBE_SERVER_URL": "https://cluster:6443",
            "KUBE_TOKEN": "kt",
            "PIPELINE_REPO_URL": "https://git.example/app.git",
            "UNRELATED": "x",
        }

        settings = PipelineSettings.from_env(tmp_path, environ=environ)

        assert settings.credentials == {"SONAR_TOKEN": "sq", "KUBE_SERVER_URL": "https://cluster:6443", "KUBE_TOKEN": "kt"}
        assert settings.repo_url == "https://git.example/app.git"
        assert settings.sonar_token == "sq"
        assert settings.kube_server == "https://cluster:6443"
        assert sorted(settings.secret_values()) == ["kt", "sq"]

    def test_overrides_win_and_none_is_ignored(self, tmp_path):
        settings = PipelineSettings.from_env(
            tmp_path,
            environ={"PIPELINE_REPO_URL": "from-env"},
            repo_url="from-cli",
            branch=None,
            tag="2.0",
        )

        assert settings.repo_url == "from-cli"
        assert settings.branch == "main"
        assert settings.image_ref.endswith(":2.0")

    def test_state_dir_under_workspace(self, tmp_path):
        settings = PipelineSettings(workspace=tmp_path)
        assert settings.state_dir == tmp_path / ".pipeline"
        assert settings.sonar_token is None
        assert settings.secret_values() == []

    def test_settings_are_frozen(self, tmp_path):
        settings = PipelineSettings(workspace=tmp_path)
        with pytest.raises(AttributeError):
            settings.branch = "dev"  # type: ignore[misc]


@pytest.mark.unit
class TestTimeouts:
    def test_get_timeout_known_and_unknown(self):
        assert get_timeout("quality_gate") == TIMEOUTS.QUALITY_GATE
        assert get_timeout("file_lock") == TIMEOUTS.FILE_LOCK
        assert get_timeout("something-else") == TIMEOUTS.HTTP

    def test_components_use_configured_timeouts(self, tmp_path):
        from src.pipeline.quality_gate import SonarQualityGateSource, StaticGateSource
        from src.pipeline.runner import PipelineRunner

        runner = PipelineRunner(workspace=tmp_path, executor=object(), gate_source=StaticGateSource(True), env={})
        assert runner.lock_timeout == TIMEOUTS.FILE_LOCK

        timeout = SonarQualityGateSource()._timeout
        assert timeout.read == TIMEOUTS.HTTP
        assert timeout.connect == TIMEOUTS.HTTP_CONNECT


@pytest.mark.unit
class TestEnvFile:
    def test_load_env_file_lenient_does_not_override(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\nexport PIPELINE_TEST_A=\"one\"\nPIPELINE_TEST_B=two\nbroken line\n",
            encoding="utf-8",
        )

        with patch.dict(os.environ, {"PIPELINE_TEST_B": "kept"}, clear=False):
            load_env_file_lenient(env_file)
            assert os.environ["PIPELINE_TEST_A"] == "one"
            assert os.environ["PIPELINE_TEST_B"] == "kept"
            os.environ.pop("PIPELINE_TEST_A", None)

    def test_missing_env_file_is_ignored(self, tmp_path):
        load_env_file_lenient(Path(tmp_path / "nope.env"))


@pytest.mark.unit
class TestBuildToolEnv:
    def test_sanitized_env_keeps_allowlist_and_credentials(self):
        parent = {"PATH": "/usr/bin", "JAVA_HOME": "/jdk", "AWS_SECRET_ACCESS_KEY": "leak"}

        env = build_tool_env(credentials={"SONAR_TOKEN": "sq"}, parent=parent)

        assert env == {"PATH": "/usr/bin", "JAVA_HOME": "/jdk", "SONAR_TOKEN": "sq"}

    def test_unsanitized_env_inherits_everything(self):
        env = build_tool_env(sanitize_env=False, parent={"A": "1"})
        assert env == {"A": "1"}

    def test_extra_allowlist(self):
        env = build_tool_env(allowlist=["CUSTOM"], parent={"CUSTOM": "x", "OTHER": "y"})
        assert env == {"CUSTOM": "x"}
