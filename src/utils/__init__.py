"""
Utility Functions
=================
Common utilities for path validation, schema validation and subprocess setup.
"""

from .validation import (
    is_within,
    validate_workspace,
    validate_report_path,
)

from .schema_validation import (
    validate_against_schema,
    validate_pipeline_run,
    validate_degradation_event,
    validate_degradation_summary,
    is_valid_pipeline_run,
)

from .subprocess_env import build_tool_env
from .subprocess_text import to_text

__all__ = [
    "is_within",
    "validate_workspace",
    "validate_report_path",
    "validate_against_schema",
    "validate_pipeline_run",
    "validate_degradation_event",
    "validate_degradation_summary",
    "is_valid_pipeline_run",
    "build_tool_env",
    "to_text",
]
