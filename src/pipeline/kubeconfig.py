"""Per-run cluster credentials.

kubectl stages authenticate through a kubeconfig file written for the run
instead of ``--server``/``--token`` flags, so the token never shows up in the
host process list. The file lives in a private temporary directory that is
removed when the run ends.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from loguru import logger

from src.config import PipelineSettings

KUBECONFIG_FILENAME = "kubeconfig"
_NAME = "pipeline"


def build_kubeconfig(
    *,
    server: str,
    token: str,
    namespace: str,
    insecure_skip_tls_verify: bool = False,
) -> Dict[str, Any]:
    """Return a single-context kubeconfig as a dict (JSON is valid kubeconfig)."""
    cluster: Dict[str, Any] = {"server": server}
    if insecure_skip_tls_verify:
        cluster["insecure-skip-tls-verify"] = True

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": _NAME, "cluster": cluster}],
        "users": [{"name": _NAME, "user": {"token": token}}],
        "contexts": [{"name": _NAME, "context": {"cluster": _NAME, "user": _NAME, "namespace": namespace}}],
        "current-context": _NAME,
    }


def write_kubeconfig(directory: Path, settings: PipelineSettings) -> Path:
    """Write the kubeconfig for settings into directory, readable by the owner only."""
    if not settings.kube_server or not settings.kube_token:
        raise ValueError("Cluster server and token are required to write a kubeconfig")

    payload = build_kubeconfig(
        server=settings.kube_server,
        token=settings.kube_token,
        namespace=settings.namespace,
        insecure_skip_tls_verify=settings.insecure_skip_tls_verify,
    )

    path = Path(directory) / KUBECONFIG_FILENAME
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
        f.write("\n")
    return path


@contextmanager
def temporary_kubeconfig(settings: PipelineSettings) -> Iterator[Optional[Path]]:
    """Yield a kubeconfig path for the run, or None when no cluster credentials are set."""
    if not settings.kube_server or not settings.kube_token:
        yield None
        return

    with tempfile.TemporaryDirectory(prefix="pipeline_kube_") as tmp:
        path = write_kubeconfig(Path(tmp), settings)
        logger.debug("Wrote run kubeconfig to {}", path)
        yield path
