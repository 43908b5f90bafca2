"""Read-only cluster access through ``oc`` / ``kubectl``.

Instance status is derived from the pod JSON (``get pods -o json``) the same
way ``kubectl get pods`` computes its STATUS column, so the monitor sees
``Running``, ``Completed``, ``Init:0/2``, ``Init:CrashLoopBackOff``,
``PodInitializing``, ``CrashLoopBackOff``, ``Terminating`` and friends.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from datetime import UTC, datetime
from typing import Any

from relspine.core.errors import ToolError, ToolNotFoundError
from relspine.core.logging import get_logger
from relspine.transition.models import HealthSample

logger = get_logger(__name__)


def _age(created: str | None, now: datetime | None = None) -> str:
    if not created:
        return ""
    try:
        start = datetime.fromisoformat(created.replace("Z", "+00:00"))
    except ValueError:
        return ""
    seconds = int(((now or datetime.now(UTC)) - start).total_seconds())
    if seconds < 120:
        return f"{max(seconds, 0)}s"
    if seconds < 7200:
        return f"{seconds // 60}m"
    if seconds < 172800:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def pod_phase(pod: dict[str, Any]) -> str:
    """kubectl-style status string for one pod object."""
    metadata = pod.get("metadata", {})
    status = pod.get("status", {})
    reason = status.get("reason") or status.get("phase") or "Unknown"

    if metadata.get("deletionTimestamp"):
        return "Terminating"

    init_statuses = status.get("initContainerStatuses") or []
    for i, cs in enumerate(init_statuses):
        state = cs.get("state", {})
        terminated = state.get("terminated")
        if terminated and terminated.get("exitCode") == 0:
            continue
        if terminated:
            return f"Init:{terminated.get('reason') or 'Error'}"
        waiting = state.get("waiting")
        if waiting and waiting.get("reason") and waiting["reason"] != "PodInitializing":
            return f"Init:{waiting['reason']}"
        return f"Init:{i}/{len(init_statuses)}"

    if status.get("phase") == "Succeeded":
        return "Completed"

    for cs in status.get("containerStatuses") or []:
        state = cs.get("state", {})
        if state.get("waiting", {}).get("reason"):
            reason = state["waiting"]["reason"]
        elif state.get("terminated"):
            terminated = state["terminated"]
            reason = terminated.get("reason") or f"ExitCode:{terminated.get('exitCode')}"

    if status.get("phase") == "Running" and reason == "Running":
        return "Running"
    return reason


def sample_from_pod(pod: dict[str, Any], now: datetime | None = None) -> HealthSample:
    """Reduce a pod object to a :class:`HealthSample`."""
    container_statuses = pod.get("status", {}).get("containerStatuses") or []
    containers = pod.get("spec", {}).get("containers") or []
    return HealthSample(
        name=pod.get("metadata", {}).get("name", ""),
        ready=sum(1 for cs in container_statuses if cs.get("ready")),
        desired=len(containers) or len(container_statuses),
        phase=pod_phase(pod),
        restarts=sum(int(cs.get("restartCount", 0)) for cs in container_statuses),
        age=_age(pod.get("metadata", {}).get("creationTimestamp"), now),
    )


class KubeClusterClient:
    """``ClusterClient`` implementation over ``oc`` or ``kubectl``."""

    def __init__(self, cli: str = "kubectl", timeout: int = 60) -> None:
        self.timeout = timeout
        self.cli_name = cli
        binary = shutil.which(cli)
        if binary is None:
            raise ToolNotFoundError(cli)
        self._cli = binary

    def namespace_exists(self, namespace: str) -> bool:
        result = self._run(["get", "namespace", namespace, "-o", "name"], check=False)
        return result.returncode == 0

    def list_instances(self, namespace: str) -> list[HealthSample]:
        result = self._run(["get", "pods", "--namespace", namespace, "-o", "json"])
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ToolError(
                f"{self.cli_name} returned malformed pod JSON",
                stderr=result.stdout[:500],
                cause=exc,
            ) from exc
        now = datetime.now(UTC)
        return [sample_from_pod(pod, now) for pod in payload.get("items", [])]

    def _run(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        cmd = [self._cli, *args]
        logger.debug("cluster.exec", cmd=" ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise ToolError(
                f"{self.cli_name} command timed out after {self.timeout}s: {' '.join(args)}",
                cause=exc,
            ) from exc
        if check and result.returncode != 0:
            raise ToolError(
                f"{self.cli_name} command failed (exit {result.returncode}): {' '.join(args)}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result


__all__ = ["KubeClusterClient", "pod_phase", "sample_from_pod"]
