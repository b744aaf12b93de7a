"""Stock pipeline definition.

The fixed stage sequence of the Java web application pipeline: checkout,
secret scan, build and test with Maven, Trivy scans, SonarQube analysis and
quality gate, artifact publishing, Docker image build and push, and deployment
to the cluster.

Only two stages are tolerant: the secret scan and the quality gate wait.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from src.config import PipelineSettings
from src.pipeline.stages import Stage, StageDefinitionError

GITLEAKS_REPORT = "gitleaks-report.json"
TRIVY_FS_REPORT = "trivy-fs-report.html"
TRIVY_IMAGE_REPORT = "trivy-image-report.html"

_policy_settings = PipelineSettings(workspace=Path("."), repo_url="<repository>")


def default_tolerance_policy() -> Dict[str, bool]:
    """Stage name -> continue_on_failure for the stock pipeline."""
    return {stage.name: stage.continue_on_failure for stage in default_stages(_policy_settings)}


def _kubectl(settings: PipelineSettings, kubeconfig: Optional[Path], *args: str) -> tuple:
    argv: List[str] = ["kubectl"]
    if kubeconfig is not None:
        argv.append(f"--kubeconfig={kubeconfig}")
    argv.extend(["--namespace", settings.namespace])
    argv.extend(args)
    return tuple(argv)


def _maven(settings: PipelineSettings, goal: str) -> tuple:
    argv = ["mvn", "--batch-mode"]
    if settings.maven_settings:
        argv.extend(["-s", settings.maven_settings])
    argv.append(goal)
    return tuple(argv)


def default_stages(settings: PipelineSettings, *, kubeconfig: Optional[Path] = None) -> List[Stage]:
    """The stock stage list. kubectl stages use kubeconfig when given, else the ambient one."""
    if not settings.repo_url:
        raise StageDefinitionError("A repository URL is required for the checkout stage")

    project_key = settings.sonar_project_key or settings.image
    project_name = settings.sonar_project_name or project_key

    return [
        Stage(
            name="Git Checkout",
            commands=(
                ("git", "init", "--quiet"),
                ("git", "fetch", "--force", "--depth", "1", settings.repo_url, settings.branch),
                ("git", "checkout", "--force", "FETCH_HEAD"),
            ),
        ),
        Stage(
            name="Secret Scan",
            commands=(
                (
                    "gitleaks", "detect", "--source", ".", "--redact",
                    "--report-format", "json", "--report-path", GITLEAKS_REPORT,
                ),
            ),
            continue_on_failure=True,
            reports=(GITLEAKS_REPORT,),
        ),
        Stage(name="Compile", commands=(_maven(settings, "compile"),)),
        Stage(name="Test", commands=(_maven(settings, "test"),)),
        Stage(
            name="File System Scan",
            commands=(("trivy", "fs", "--format", "table", "-o", TRIVY_FS_REPORT, "."),),
            reports=(TRIVY_FS_REPORT,),
        ),
        Stage(
            name="SonarQube Analysis",
            commands=(
                (
                    "sonar-scanner",
                    f"-Dsonar.projectKey={project_key}",
                    f"-Dsonar.projectName={project_name}",
                    "-Dsonar.java.binaries=.",
                    f"-Dsonar.host.url={settings.sonar_host_url}",
                ),
            ),
        ),
        Stage.quality_gate("Quality Gate", timeout_seconds=settings.quality_gate_timeout),
        Stage(name="Build", commands=(_maven(settings, "package"),)),
        Stage(name="Publish Artifacts", commands=(_maven(settings, "deploy"),)),
        Stage(
            name="Build & Tag Docker Image",
            commands=(("docker", "build", "-t", settings.image_ref, "."),),
        ),
        Stage(
            name="Docker Image Scan",
            commands=(("trivy", "image", "--format", "table", "-o", TRIVY_IMAGE_REPORT, settings.image_ref),),
            reports=(TRIVY_IMAGE_REPORT,),
        ),
        Stage(name="Push Docker Image", commands=(("docker", "push", settings.image_ref),)),
        Stage(
            name="Deploy To Kubernetes",
            commands=(_kubectl(settings, kubeconfig, "apply", "-f", settings.manifest),),
        ),
        Stage(
            name="Verify Deployment",
            commands=(
                _kubectl(settings, kubeconfig, "get", "pods"),
                _kubectl(settings, kubeconfig, "get", "svc"),
            ),
        ),
    ]
