"""
Command Execution
=================
The runner's only capability: invoke an external command, return its exit code
and captured output. Tests substitute a scripted executor; production uses
SubprocessExecutor.
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, Sequence, Tuple

from loguru import logger

from src.utils.subprocess_text import to_text

REDACTED = "****"


class ToolNotFoundError(RuntimeError):
    """Raised when a command's executable cannot be launched."""


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandExecutor(Protocol):
    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Dict[str, str],
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        ...


def redact_text(text: str, secrets: Iterable[str]) -> str:
    out = text
    for secret in secrets:
        if secret:
            out = out.replace(secret, REDACTED)
    return out


def redact_argv(argv: Sequence[str], secrets: Iterable[str]) -> Tuple[str, ...]:
    """Return argv with every secret value masked."""
    secrets = [s for s in secrets if s]
    return tuple(redact_text(str(part), secrets) for part in argv)


class SubprocessExecutor:
    """Run commands with subprocess.run, capturing text output."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Dict[str, str],
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        started = time.monotonic()
        try:
            result = subprocess.run(
                list(argv),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout_seconds,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
                close_fds=True,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(f"Executable not found: {argv[0]}") from e
        except PermissionError as e:
            raise ToolNotFoundError(f"Executable not runnable: {argv[0]}") from e
        except OSError as e:
            # For example ENOEXEC on a script without a shebang
            raise ToolNotFoundError(f"Cannot launch {argv[0]}: {e}") from e
        except subprocess.TimeoutExpired as e:
            stderr = to_text(e.stderr)
            if stderr:
                stderr = stderr.rstrip("\n") + "\n"
            stderr += f"Execution timed out after {timeout_seconds} seconds"
            logger.warning("Command timed out after {}s: {}", timeout_seconds, argv[0])
            return CommandResult(
                returncode=-1,
                stdout=to_text(e.stdout),
                stderr=stderr,
                duration_seconds=time.monotonic() - started,
                timed_out=True,
            )

        return CommandResult(
            returncode=int(result.returncode),
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration_seconds=time.monotonic() - started,
        )
