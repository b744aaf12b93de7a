"""Preflight environment checks.

Missing tools or credentials are environment failures: they abort the run
before any stage executes instead of surfacing halfway through a deploy.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from loguru import logger

from src.config import CLUSTER, SONAR, PipelineSettings
from src.pipeline.stages import Stage


class PipelineEnvironmentError(RuntimeError):
    """Raised when the environment cannot support the requested run."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = list(problems or [])


@dataclass
class PreflightReport:
    missing_tools: List[str] = field(default_factory=list)
    missing_credentials: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_tools and not self.missing_credentials

    def problems(self) -> List[str]:
        out = [f"tool not found on PATH: {t}" for t in self.missing_tools]
        out.extend(f"credential not set: {c}" for c in self.missing_credentials)
        return out


def required_tools(stages: Sequence[Stage]) -> List[str]:
    """Executables named by the stages, in first-use order."""
    seen: List[str] = []
    for stage in stages:
        for cmd in stage.commands:
            if cmd[0] not in seen:
                seen.append(cmd[0])
    return seen


def required_credentials(stages: Sequence[Stage]) -> List[str]:
    tools = required_tools(stages)
    keys: List[str] = []
    if "sonar-scanner" in tools or any(s.is_quality_gate for s in stages):
        keys.append(SONAR.TOKEN_ENV)
    if "kubectl" in tools:
        keys.extend([CLUSTER.SERVER_ENV, CLUSTER.TOKEN_ENV])
    return keys


def check_environment(
    stages: Sequence[Stage],
    settings: PipelineSettings,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> PreflightReport:
    report = PreflightReport()

    for tool in required_tools(stages):
        if which(tool) is None:
            report.missing_tools.append(tool)

    for key in required_credentials(stages):
        if not settings.credentials.get(key):
            report.missing_credentials.append(key)

    return report


def ensure_environment(
    stages: Sequence[Stage],
    settings: PipelineSettings,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> PreflightReport:
    """Run check_environment and raise PipelineEnvironmentError on any problem."""
    report = check_environment(stages, settings, which=which)
    if report.ok:
        return report

    problems = report.problems()
    for p in problems:
        logger.error("Preflight: {}", p)
    raise PipelineEnvironmentError("Preflight failed: " + "; ".join(problems), problems)
