"""Quality gate signal.

The quality gate verdict is produced by an external analysis server and arrives
asynchronously. Sources hand the runner a ``concurrent.futures.Future[bool]``;
the runner waits on it with an explicit timeout and cancels it when the wait
runs out. Nothing here blocks on a bare sleep, so tests can fake the signal
with an already-resolved or never-resolved future.

SonarQualityGateSource mirrors what Jenkins' waitForQualityGate does: read the
scanner's report-task.txt, follow the background (CE) task until it finishes,
then ask for the quality gate status of the resulting analysis.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import CancelledError, Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.config import SONAR, TIMEOUTS, get_timeout


class QualityGateError(RuntimeError):
    """Raised when the quality gate verdict cannot be obtained."""


@dataclass(frozen=True)
class GateOutcome:
    passed: Optional[bool]
    timed_out: bool = False
    error: Optional[str] = None
    waited_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.passed is True


class QualityGateSource(Protocol):
    def request(self, workspace: Path) -> "Future[bool]":
        ...


def _resolve(future: "Future[bool]", value: bool) -> None:
    if future.cancelled():
        return
    try:
        future.set_result(value)
    except InvalidStateError:
        logger.debug("Quality gate verdict arrived after the future was settled")


def _fail(future: "Future[bool]", exc: BaseException) -> None:
    if future.cancelled():
        return
    try:
        future.set_exception(exc)
    except InvalidStateError:
        logger.debug("Quality gate error arrived after the future was settled: {}", exc)


def wait_for_verdict(
    future: "Future[bool]",
    timeout_seconds: float,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> GateOutcome:
    """Block for at most timeout_seconds waiting for a verdict."""
    started = clock()
    try:
        verdict = future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        future.cancel()
        return GateOutcome(
            passed=None,
            timed_out=True,
            error=f"No quality gate verdict within {timeout_seconds:g}s",
            waited_seconds=clock() - started,
        )
    except CancelledError:
        return GateOutcome(passed=None, error="Quality gate wait was cancelled", waited_seconds=clock() - started)
    except QualityGateError as e:
        return GateOutcome(passed=None, error=str(e), waited_seconds=clock() - started)
    except Exception as e:
        logger.warning("Quality gate source raised {}: {}", type(e).__name__, e)
        return GateOutcome(passed=None, error=f"{type(e).__name__}: {e}", waited_seconds=clock() - started)

    return GateOutcome(passed=bool(verdict), waited_seconds=clock() - started)


class StaticGateSource:
    """Resolves immediately with a fixed verdict."""

    def __init__(self, passed: bool = True):
        self.passed = passed

    def request(self, workspace: Path) -> "Future[bool]":
        future: Future[bool] = Future()
        future.set_result(bool(self.passed))
        return future


class SignalGateSource:
    """A gate whose verdict is delivered by an external callback.

    ``deliver`` may be called from any thread (for example a webhook handler)
    before or after the runner starts waiting.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._future: Optional[Future[bool]] = None
        self._early: Optional[bool] = None

    def request(self, workspace: Path) -> "Future[bool]":
        with self._lock:
            self._future = Future()
            if self._early is not None:
                _resolve(self._future, self._early)
                self._early = None
            return self._future

    def deliver(self, passed: bool) -> None:
        with self._lock:
            if self._future is None:
                self._early = bool(passed)
                return
            _resolve(self._future, bool(passed))


def parse_report_task(text: str) -> Dict[str, str]:
    """Parse the scanner's report-task.txt (key=value lines)."""
    out: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        out[key.strip()] = value.strip()
    return out


class SonarQualityGateSource:
    """Poll the SonarQube Web API for the quality gate of the latest analysis."""

    def __init__(
        self,
        *,
        host_url: str = SONAR.HOST_URL,
        token: Optional[str] = None,
        poll_interval: float = TIMEOUTS.QUALITY_GATE_POLL,
        report_task_file: str = SONAR.REPORT_TASK_FILE,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.host_url = host_url.rstrip("/")
        self.token = token
        self.poll_interval = float(poll_interval)
        self.report_task_file = report_task_file
        self._transport = transport
        self._timeout = httpx.Timeout(get_timeout("http"), connect=get_timeout("http_connect"))

    def _client(self, server_url: str) -> httpx.Client:
        auth = (self.token, "") if self.token else None
        return httpx.Client(
            base_url=server_url,
            auth=auth,
            timeout=self._timeout,
            transport=self._transport,
        )

    def request(self, workspace: Path) -> "Future[bool]":
        future: Future[bool] = Future()

        report_path = Path(workspace) / self.report_task_file
        try:
            task = parse_report_task(report_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            _fail(future, QualityGateError(f"Cannot read {self.report_task_file}: {type(e).__name__}"))
            return future

        ce_task_id = task.get("ceTaskId")
        if not ce_task_id:
            _fail(future, QualityGateError(f"{self.report_task_file} has no ceTaskId"))
            return future

        server_url = (task.get("serverUrl") or self.host_url).rstrip("/")
        stop = threading.Event()
        future.add_done_callback(lambda _f: stop.set())

        thread = threading.Thread(
            target=self._poll,
            args=(future, server_url, ce_task_id, stop),
            name=f"quality-gate-{ce_task_id}",
            daemon=True,
        )
        thread.start()
        return future

    def _poll(self, future: "Future[bool]", server_url: str, ce_task_id: str, stop: threading.Event) -> None:
        try:
            with self._client(server_url) as client:
                analysis_id = self._wait_for_analysis(client, ce_task_id, stop)
                if analysis_id is None:
                    return
                payload = self._get_json(client, "/api/qualitygates/project_status", {"analysisId": analysis_id})
        except QualityGateError as e:
            _fail(future, e)
            return
        except httpx.HTTPError as e:
            _fail(future, QualityGateError(f"SonarQube request failed: {type(e).__name__}: {e}"))
            return
        except Exception as e:
            logger.exception("Quality gate poller for task {} crashed", ce_task_id)
            _fail(future, QualityGateError(f"Quality gate poller failed: {type(e).__name__}: {e}"))
            return

        project_status = payload.get("projectStatus")
        if not isinstance(project_status, dict):
            _fail(future, QualityGateError("Unexpected quality gate payload: projectStatus is not an object"))
            return
        status = str(project_status.get("status") or "").upper()
        logger.info("Quality gate status for analysis {}: {}", analysis_id, status or "<missing>")
        if not status or status == "NONE":
            _fail(future, QualityGateError("Project has no quality gate status"))
            return
        _resolve(future, status == "OK")

    def _wait_for_analysis(self, client: httpx.Client, ce_task_id: str, stop: threading.Event) -> Optional[str]:
        while not stop.is_set():
            payload = self._get_json(client, "/api/ce/task", {"id": ce_task_id})
            task = payload.get("task")
            if not isinstance(task, dict):
                raise QualityGateError(f"Unexpected background task payload for {ce_task_id}")
            status = str(task.get("status") or "").upper()

            if status == "SUCCESS":
                analysis_id = task.get("analysisId")
                if not analysis_id:
                    raise QualityGateError(f"Background task {ce_task_id} finished without an analysisId")
                return str(analysis_id)
            if status in ("FAILED", "CANCELED"):
                raise QualityGateError(f"Background task {ce_task_id} ended with status {status}")

            logger.debug("Background task {} is {}; polling again in {}s", ce_task_id, status, self.poll_interval)
            stop.wait(self.poll_interval)
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _get_json(self, client: httpx.Client, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        resp = client.get(path, params=params)
        if resp.status_code >= 400:
            raise QualityGateError(f"SonarQube returned HTTP {resp.status_code} for {path}")
        try:
            data = resp.json()
        except ValueError as e:
            raise QualityGateError(f"Failed to parse SonarQube response as JSON: {e}")
        if not isinstance(data, dict):
            raise QualityGateError(f"Unexpected SonarQube payload for {path}")
        return data
