"""Tests for pod status derivation and the kubectl/oc client."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from relspine.core.errors import ToolError, ToolNotFoundError
from relspine.transition.cluster import KubeClusterClient, _age, pod_phase, sample_from_pod

NOW = datetime(2026, 3, 14, 12, 0, 0, tzinfo=UTC)


def _pod(name="s0-b2bi-asi-server-0", phase="Running", containers=None, init=None, **metadata):
    status = {"phase": phase}
    if containers is not None:
        status["containerStatuses"] = containers
    if init is not None:
        status["initContainerStatuses"] = init
    return {
        "metadata": {"name": name, "creationTimestamp": "2026-03-14T11:00:00Z", **metadata},
        "spec": {"containers": [{"name": "main"}] * max(len(containers or []), 1)},
        "status": status,
    }


def _running(ready=True, restarts=0):
    return {"ready": ready, "restartCount": restarts, "state": {"running": {}}}


def _waiting(reason, restarts=0):
    return {"ready": False, "restartCount": restarts, "state": {"waiting": {"reason": reason}}}


def _terminated(exit_code=0, reason=None):
    return {"ready": False, "restartCount": 0, "state": {"terminated": {"exitCode": exit_code, "reason": reason}}}


class TestPodPhase:
    def test_running(self):
        assert pod_phase(_pod(containers=[_running()])) == "Running"

    def test_succeeded_is_completed(self):
        assert pod_phase(_pod(phase="Succeeded", containers=[_terminated(0, "Completed")])) == "Completed"

    def test_crash_loop(self):
        assert pod_phase(_pod(containers=[_waiting("CrashLoopBackOff", restarts=5)])) == "CrashLoopBackOff"

    def test_image_pull(self):
        assert pod_phase(_pod(phase="Pending", containers=[_waiting("ImagePullBackOff")])) == "ImagePullBackOff"

    def test_terminated_without_reason(self):
        assert pod_phase(_pod(phase="Failed", containers=[_terminated(137)])) == "ExitCode:137"

    def test_init_progress(self):
        pod = _pod(phase="Pending", init=[_terminated(0), _running(ready=False)], containers=[])
        assert pod_phase(pod) == "Init:1/2"

    def test_init_waiting_reason(self):
        pod = _pod(phase="Pending", init=[_waiting("CrashLoopBackOff")])
        assert pod_phase(pod) == "Init:CrashLoopBackOff"

    def test_init_failed(self):
        pod = _pod(phase="Pending", init=[_terminated(1, "Error")])
        assert pod_phase(pod) == "Init:Error"

    def test_pod_initializing(self):
        pod = _pod(phase="Pending", init=[_terminated(0)], containers=[_waiting("PodInitializing")])
        assert pod_phase(pod) == "PodInitializing"

    def test_terminating(self):
        pod = _pod(containers=[_running()], deletionTimestamp="2026-03-14T11:59:00Z")
        assert pod_phase(pod) == "Terminating"

    def test_pending_without_statuses(self):
        assert pod_phase(_pod(phase="Pending")) == "Pending"


class TestSampleFromPod:
    def test_counts_ready_and_restarts(self):
        pod = _pod(containers=[_running(), _running(ready=False, restarts=3)])
        sample = sample_from_pod(pod, NOW)
        assert sample.name == "s0-b2bi-asi-server-0"
        assert (sample.ready, sample.desired) == (1, 2)
        assert sample.restarts == 3
        assert sample.age == "60m"
        assert not sample.converged

    @pytest.mark.parametrize(
        ("created", "age"),
        [("2026-03-14T11:59:30Z", "30s"), ("2026-03-14T09:00:00Z", "3h"), ("2026-03-10T12:00:00Z", "4d"),
         (None, ""), ("yesterday", "")],
    )
    def test_age(self, created, age):
        assert _age(created, NOW) == age


class TestKubeClusterClient:
    @patch("shutil.which", return_value=None)
    def test_missing_cli(self, _which):
        with pytest.raises(ToolNotFoundError, match="oc not found"):
            KubeClusterClient("oc")

    @patch("subprocess.run")
    @patch("shutil.which", return_value="/usr/bin/oc")
    def test_namespace_exists(self, _which, mock_run):
        client = KubeClusterClient("oc")
        mock_run.return_value = MagicMock(returncode=0, stdout="namespace/b2bi\n", stderr="")
        assert client.namespace_exists("b2bi") is True
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="NotFound")
        assert client.namespace_exists("nope") is False

    @patch("subprocess.run")
    @patch("shutil.which", return_value="/usr/bin/kubectl")
    def test_list_instances(self, _which, mock_run):
        payload = {"items": [_pod(containers=[_running()]), _pod(name="s0-b2bi-purge-1", phase="Succeeded",
                                                                  containers=[_terminated(0, "Completed")])]}
        mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps(payload), stderr="")

        samples = KubeClusterClient().list_instances("b2bi")

        assert [s.phase for s in samples] == ["Running", "Completed"]
        assert mock_run.call_args.args[0] == [
            "/usr/bin/kubectl", "get", "pods", "--namespace", "b2bi", "-o", "json",
        ]

    @patch("subprocess.run")
    @patch("shutil.which", return_value="/usr/bin/kubectl")
    def test_list_instances_failure(self, _which, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="Forbidden")
        with pytest.raises(ToolError, match="kubectl command failed"):
            KubeClusterClient().list_instances("b2bi")

    @patch("subprocess.run")
    @patch("shutil.which", return_value="/usr/bin/kubectl")
    def test_malformed_payload(self, _which, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="<html>", stderr="")
        with pytest.raises(ToolError, match="malformed"):
            KubeClusterClient().list_instances("b2bi")
