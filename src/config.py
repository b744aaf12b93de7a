"""
Centralized Configuration
=========================
Centralized configuration values and constants for the pipeline runner.

This module provides:
- Timeout configuration for stages, the quality gate and HTTP calls
- Environment variable defaults for SonarQube, the cluster and tracing
- PipelineSettings, the explicit configuration handed to the runner

The runner itself never reads os.environ. Everything it needs flows in through
PipelineSettings, which callers build with PipelineSettings.from_env() or by hand.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration in seconds."""

    # Quality gate wait (Jenkins waitForQualityGate default is 1 hour)
    QUALITY_GATE: float = float(os.getenv("PIPELINE_QUALITY_GATE_TIMEOUT", "3600"))
    QUALITY_GATE_POLL: float = float(os.getenv("PIPELINE_QUALITY_GATE_POLL", "5"))

    # SonarQube Web API
    HTTP: float = 30.0
    HTTP_CONNECT: float = 10.0

    # Workspace lock acquisition
    FILE_LOCK: float = 5.0


@dataclass(frozen=True)
class SonarConfig:
    """SonarQube server configuration."""

    HOST_URL: str = os.getenv("SONAR_HOST_URL", "http://localhost:9000")
    TOKEN_ENV: str = "SONAR_TOKEN"
    REPORT_TASK_FILE: str = ".scannerwork/report-task.txt"


@dataclass(frozen=True)
class ClusterConfig:
    """Kubernetes control plane configuration."""

    SERVER_ENV: str = "KUBE_SERVER_URL"
    TOKEN_ENV: str = "KUBE_TOKEN"
    NAMESPACE: str = os.getenv("KUBE_NAMESPACE", "webapps")
    INSECURE_SKIP_TLS_VERIFY: bool = _env_bool("KUBE_INSECURE_SKIP_TLS_VERIFY")


@dataclass(frozen=True)
class TracingConfig:
    """Tracing configuration."""

    SERVICE_NAME: str = "devsecops-pipeline"
    OTLP_ENDPOINT: str = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
    ENABLED: bool = _env_bool("ENABLE_TRACING")


@dataclass(frozen=True)
class PipelineDefaults:
    """Defaults for the stock pipeline."""

    BRANCH: str = os.getenv("PIPELINE_BRANCH", "main")
    IMAGE: str = os.getenv("PIPELINE_IMAGE", "boardgame")
    TAG: str = os.getenv("PIPELINE_IMAGE_TAG", "latest")
    MANIFEST: str = os.getenv("PIPELINE_MANIFEST", "deployment-service.yaml")
    STATE_DIRNAME: str = ".pipeline"


# Global singleton instances
TIMEOUTS = TimeoutConfig()
SONAR = SonarConfig()
CLUSTER = ClusterConfig()
TRACING = TracingConfig()
DEFAULTS = PipelineDefaults()


@dataclass(frozen=True)
class PipelineSettings:
    """Explicit configuration for one pipeline run.

    Credentials live in ``credentials`` (env var name -> value). They are passed
    to child processes through their environment and redacted from every log line
    and run record.
    """

    workspace: Path
    repo_url: str = ""
    branch: str = DEFAULTS.BRANCH

    image: str = DEFAULTS.IMAGE
    tag: str = DEFAULTS.TAG
    manifest: str = DEFAULTS.MANIFEST
    namespace: str = CLUSTER.NAMESPACE

    sonar_host_url: str = SONAR.HOST_URL
    sonar_project_key: str = ""
    sonar_project_name: str = ""

    maven_settings: Optional[str] = None
    insecure_skip_tls_verify: bool = CLUSTER.INSECURE_SKIP_TLS_VERIFY

    quality_gate_timeout: float = TIMEOUTS.QUALITY_GATE
    quality_gate_poll_interval: float = TIMEOUTS.QUALITY_GATE_POLL

    credentials: Mapping[str, str] = field(default_factory=dict)
    state_dirname: str = DEFAULTS.STATE_DIRNAME

    @property
    def state_dir(self) -> Path:
        return self.workspace / self.state_dirname

    @property
    def image_ref(self) -> str:
        return f"{self.image}:{self.tag}"

    @property
    def sonar_token(self) -> Optional[str]:
        return self.credentials.get(SONAR.TOKEN_ENV) or None

    @property
    def kube_server(self) -> Optional[str]:
        return self.credentials.get(CLUSTER.SERVER_ENV) or None

    @property
    def kube_token(self) -> Optional[str]:
        return self.credentials.get(CLUSTER.TOKEN_ENV) or None

    def secret_values(self) -> list[str]:
        """Values that must never appear in logs or run records."""
        secret_keys = {SONAR.TOKEN_ENV, CLUSTER.TOKEN_ENV}
        return [v for k, v in self.credentials.items() if k in secret_keys and v]

    @classmethod
    def from_env(
        cls,
        workspace: str | Path,
        *,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "PipelineSettings":
        """Build settings from environment variables plus explicit overrides."""
        env = os.environ if environ is None else environ

        credentials: Dict[str, str] = {}
        for key in (SONAR.TOKEN_ENV, CLUSTER.SERVER_ENV, CLUSTER.TOKEN_ENV):
            value = env.get(key)
            if value:
                credentials[key] = value

        values = {
            "workspace": Path(workspace).expanduser().resolve(),
            "repo_url": env.get("PIPELINE_REPO_URL", ""),
            "sonar_host_url": env.get("SONAR_HOST_URL", SONAR.HOST_URL),
            "sonar_project_key": env.get("SONAR_PROJECT_KEY", ""),
            "sonar_project_name": env.get("SONAR_PROJECT_NAME", ""),
            "maven_settings": env.get("MAVEN_SETTINGS") or None,
            "credentials": credentials,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def load_env_file_lenient(env_path: Optional[Path] = None) -> None:
    """Load .env from repo root without raising or overriding existing variables."""
    path = env_path or Path(__file__).resolve().parents[1] / ".env"
    if not path.exists():
        return

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        return

    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def get_timeout(operation: str) -> float:
    """Get timeout for a specific operation type.

    Args:
        operation: One of 'quality_gate', 'poll', 'http', 'http_connect', 'file_lock'

    Returns:
        Timeout in seconds
    """
    mapping = {
        "quality_gate": TIMEOUTS.QUALITY_GATE,
        "poll": TIMEOUTS.QUALITY_GATE_POLL,
        "http": TIMEOUTS.HTTP,
        "http_connect": TIMEOUTS.HTTP_CONNECT,
        "file_lock": TIMEOUTS.FILE_LOCK,
    }
    return mapping.get(operation, TIMEOUTS.HTTP)
