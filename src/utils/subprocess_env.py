"""
Subprocess Environment Utilities
================================
Helpers for building environment dictionaries for pipeline tool execution.
"""

from __future__ import annotations

import os
from typing import Dict, Iterable, Mapping, Optional

# Tool-specific variables the stock stages rely on (Maven, Docker, Trivy caches).
TOOL_ALLOWLIST = {
    "JAVA_HOME",
    "MAVEN_HOME",
    "M2_HOME",
    "MAVEN_OPTS",
    "DOCKER_HOST",
    "DOCKER_CONFIG",
    "DOCKER_CERT_PATH",
    "DOCKER_TLS_VERIFY",
    "TRIVY_CACHE_DIR",
    "SONAR_SCANNER_OPTS",
    "KUBECONFIG",
}


def build_tool_env(
    *,
    credentials: Optional[Mapping[str, str]] = None,
    sanitize_env: bool = True,
    allowlist: Optional[Iterable[str]] = None,
    parent: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return an environment dict for an external tool invocation.

    When sanitize_env is True, only a small allowlist is inherited from the parent
    environment; configured credentials are always layered on top.

    Args:
        credentials: Env var name -> value supplied by the pipeline settings.
        sanitize_env: If False, inherits the full parent env.
        allowlist: Optional extra allowlist keys to include.
        parent: Environment to inherit from (defaults to os.environ).

    Returns:
        Dict[str, str] to pass as subprocess env.
    """

    base_allowlist = {
        "PATH",
        "HOME",
        "USER",
        "LANG",
        "LC_ALL",
        "LC_CTYPE",
        "TMPDIR",
        "TEMP",
        "TMP",
        "SSL_CERT_FILE",
        "SSL_CERT_DIR",
        "REQUESTS_CA_BUNDLE",
        "CURL_CA_BUNDLE",
        "HTTP_PROXY",
        "HTTPS_PROXY",
        "NO_PROXY",
    } | TOOL_ALLOWLIST

    if allowlist is not None:
        for key in allowlist:
            if isinstance(key, str) and key:
                base_allowlist.add(key)

    source = os.environ if parent is None else parent

    if sanitize_env:
        env: Dict[str, str] = {k: source[k] for k in base_allowlist if k in source}
    else:
        env = dict(source)

    for key, value in (credentials or {}).items():
        if isinstance(key, str) and key and isinstance(value, str):
            env[key] = value

    return env
