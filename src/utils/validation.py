"""
Validation Utilities
====================
Path validation for pipeline workspaces and stage report paths.
"""

from pathlib import Path
from typing import Union

from loguru import logger


def is_within(path: Union[str, Path], base_dir: Union[str, Path]) -> bool:
    """Return True when path resolves to a location under base_dir."""
    try:
        Path(path).resolve().relative_to(Path(base_dir).resolve())
        return True
    except ValueError:
        return False
    except OSError as e:
        logger.warning(f"Path validation error for {path}: {e}")
        return False


def validate_workspace(workspace: Union[str, Path], *, create: bool = True) -> Path:
    """
    Validate a pipeline workspace directory.

    Args:
        workspace: Path to the shared working directory
        create: Create the directory when it does not exist yet

    Returns:
        Resolved Path object

    Raises:
        ValueError: If the path exists and is not a directory, or is missing and create is False
    """
    path = Path(workspace).expanduser().resolve()

    if path.exists() and not path.is_dir():
        raise ValueError(f"Workspace is not a directory: {path}")

    if not path.exists():
        if not create:
            raise ValueError(f"Workspace does not exist: {path}")
        path.mkdir(parents=True, exist_ok=True)

    return path


def validate_report_path(report: str) -> str:
    """
    Validate a stage report path declared relative to the workspace.

    Raises:
        ValueError: If the path is empty, absolute or escapes the workspace
    """
    value = str(report).strip()
    if not value:
        raise ValueError("Report path must be non-empty")
    p = Path(value)
    if p.is_absolute():
        raise ValueError(f"Report path must be relative to the workspace: {value}")
    if ".." in p.parts:
        raise ValueError(f"Report path must stay inside the workspace: {value}")
    return p.as_posix()
