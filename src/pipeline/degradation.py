"""Graceful degradation protocol.

Tolerated stage failures (a failing secret scan, a quality gate that timed out
or failed) do not stop the run, but they must not disappear either. This module
turns them into degradation events and writes the per-run summary next to the
run record.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.pipeline.result import StageResult
from src.pipeline.stages import FailureKind, StageStatus
from src.utils.schema_validation import validate_degradation_event, validate_degradation_summary


def _utc_now_iso_z() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DegradationEvent:
    stage: str
    reason_code: str
    message: str
    created_at: str
    recommended_action: Optional[str] = None
    severity: str = "warning"
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "schema_version": "1.0",
            "created_at": self.created_at,
            "stage": self.stage,
            "reason_code": self.reason_code,
            "message": self.message,
            "recommended_action": self.recommended_action,
            "severity": self.severity,
            "details": self.details,
        }
        validate_degradation_event(payload)
        return payload


def make_degradation_event(
    *,
    stage: str,
    reason_code: str,
    message: str,
    recommended_action: Optional[str] = None,
    severity: str = "warning",
    details: Optional[Dict[str, Any]] = None,
    created_at: Optional[str] = None,
) -> Dict[str, Any]:
    evt = DegradationEvent(
        stage=str(stage).strip(),
        reason_code=str(reason_code).strip(),
        message=str(message).strip(),
        created_at=created_at or _utc_now_iso_z(),
        recommended_action=recommended_action,
        severity=severity,
        details=details,
    )
    return evt.to_dict()


def degradation_from_stage_result(result: StageResult) -> Optional[Dict[str, Any]]:
    """Return a degradation event for a tolerated failure, else None."""

    if not result.tolerated or result.status not in (StageStatus.FAILED, StageStatus.TIMED_OUT):
        return None

    details: Dict[str, Any] = {"status": result.status.value}
    if result.commands:
        details["returncode"] = result.commands[-1].returncode
    if result.reports:
        details["reports"] = list(result.reports)

    if result.failure_kind is FailureKind.GATE_TIMEOUT:
        return make_degradation_event(
            stage=result.name,
            reason_code="quality_gate_timeout",
            message=result.error or "Quality gate verdict did not arrive in time.",
            recommended_action="Check the SonarQube background task queue and webhook configuration.",
            details=details,
        )

    if result.gate_passed is False:
        return make_degradation_event(
            stage=result.name,
            reason_code="quality_gate_failed",
            message=result.error or "Quality gate returned a failing verdict.",
            recommended_action="Review the SonarQube project dashboard before promoting this build.",
            details=details,
        )

    return make_degradation_event(
        stage=result.name,
        reason_code="tolerated_stage_failure",
        message=result.error or "Stage failed but is configured to continue.",
        recommended_action="Inspect the stage output and report files.",
        details=details,
    )


def summarize_degradations(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_stage: Dict[str, int] = {}
    by_reason: Dict[str, int] = {}

    for evt in events:
        if not isinstance(evt, dict):
            continue
        stage = str(evt.get("stage") or "").strip() or "unknown"
        reason = str(evt.get("reason_code") or "").strip() or "unknown"
        by_stage[stage] = by_stage.get(stage, 0) + 1
        by_reason[reason] = by_reason.get(reason, 0) + 1

    return {
        "total": len(events),
        "by_stage": dict(sorted(by_stage.items())),
        "by_reason_code": dict(sorted(by_reason.items())),
    }


def build_degradation_summary(
    *,
    run_id: str,
    workspace: str,
    degradations: List[Dict[str, Any]],
    created_at: Optional[str] = None,
) -> Dict[str, Any]:
    payload = {
        "schema_version": "1.0",
        "created_at": created_at or _utc_now_iso_z(),
        "run_id": run_id,
        "workspace": str(workspace),
        "degradations": list(degradations),
        "counts": summarize_degradations(degradations),
    }
    validate_degradation_summary(payload)
    return payload


def write_degradation_summary(
    *,
    state_dir: Path,
    run_id: str,
    workspace: Path,
    degradations: List[Dict[str, Any]],
    created_at: Optional[str] = None,
) -> Path:
    state_dir.mkdir(parents=True, exist_ok=True)

    summary = build_degradation_summary(
        run_id=run_id,
        workspace=str(workspace),
        degradations=degradations,
        created_at=created_at,
    )

    out_path = state_dir / "degradation_summary.json"
    out_path.write_text(json.dumps(summary, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return out_path
