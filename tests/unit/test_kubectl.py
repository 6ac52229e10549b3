"""Tests for the kubectl execution agent."""

from __future__ import annotations

import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from netpolprobe.errors import InfrastructureError
from netpolprobe.probe.kubectl import KubectlAgent, KubectlPolicyClient, classify
from netpolprobe.probe.models import JobOutcome, ProbeJob, ProbeMode
from netpolprobe.topology.models import Protocol


@pytest.fixture
def job(abc_topology) -> ProbeJob:
    return ProbeJob(
        source=abc_topology.workload("x/a"),
        destination=abc_topology.workload("x/b"),
        port=80,
        protocol=Protocol.UDP,
        mode=ProbeMode.POD_IP,
    )


class TestCommand:
    def test_without_context(self, job):
        cmd = KubectlAgent().command(job)
        assert cmd == [
            "kubectl",
            "exec",
            "a",
            "-n",
            "x",
            "-c",
            "cont-80-udp",
            "--",
            "/agnhost",
            "connect",
            "10.0.0.2:80",
            "--timeout=1s",
            "--protocol=udp",
        ]

    def test_with_context(self, job):
        cmd = KubectlAgent(kube_context="kind-probe").command(job)
        assert cmd[:3] == ["kubectl", "--context", "kind-probe"]


class TestClassify:
    def test_success(self):
        assert classify(0, "", "").outcome is JobOutcome.SUCCESS

    def test_refused(self):
        result = classify(1, "", "REFUSED")
        assert result.outcome is JobOutcome.REFUSED_OR_TIMEOUT
        assert result.detail == "REFUSED"

    def test_timeout(self):
        assert classify(1, "TIMEOUT\n", "").outcome is JobOutcome.REFUSED_OR_TIMEOUT

    def test_other_failure_is_infrastructure(self):
        result = classify(1, "", 'Error from server (NotFound): pods "a" not found')
        assert result.outcome is JobOutcome.INFRASTRUCTURE_ERROR
        assert "NotFound" in result.detail

    def test_silent_failure_reports_exit_code(self):
        assert classify(126, "", "").detail == "exit code 126"


class TestExecute:
    def test_classifies_completed_process(self, job):
        proc = MagicMock(returncode=1, stdout="", stderr="REFUSED")
        with patch("netpolprobe.probe.kubectl.subprocess.run", return_value=proc) as run:
            result = KubectlAgent().execute(job, timeout=5.0)
        assert result.outcome is JobOutcome.REFUSED_OR_TIMEOUT
        assert run.call_args.kwargs["timeout"] == 5.0

    def test_subprocess_timeout_raises(self, job):
        with patch(
            "netpolprobe.probe.kubectl.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="kubectl", timeout=5.0),
        ):
            with pytest.raises(InfrastructureError, match="exceeded"):
                KubectlAgent().execute(job, timeout=5.0)

    def test_missing_kubectl_raises(self, job):
        with patch(
            "netpolprobe.probe.kubectl.subprocess.run",
            side_effect=FileNotFoundError("kubectl"),
        ):
            with pytest.raises(InfrastructureError, match="cannot run"):
                KubectlAgent().execute(job, timeout=5.0)

    def test_undecodable_output_is_replaced(self, job):
        proc = MagicMock(returncode=1, stdout="", stderr="�� error")
        with patch("netpolprobe.probe.kubectl.subprocess.run", return_value=proc) as run:
            result = KubectlAgent().execute(job, timeout=5.0)
        assert run.call_args.kwargs["errors"] == "replace"
        assert run.call_args.kwargs["text"] is True
        assert result.outcome is JobOutcome.INFRASTRUCTURE_ERROR

    @pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
    def test_real_undecodable_bytes(self, job, tmp_path):
        script = tmp_path / "fake-kubectl"
        script.write_text("#!/bin/sh\nprintf '\\377\\376 error' >&2\nexit 1\n")
        script.chmod(0o755)
        result = KubectlAgent(kubectl=str(script)).execute(job, timeout=5.0)
        assert result.outcome is JobOutcome.INFRASTRUCTURE_ERROR
        assert "error" in result.detail


CLUSTER_POLICIES = """
apiVersion: v1
kind: List
items:
  - apiVersion: networking.k8s.io/v1
    kind: NetworkPolicy
    metadata:
      name: deny-b
      namespace: x
      resourceVersion: "1234"
    spec:
      podSelector:
        matchLabels: {pod: b}
      policyTypes: [Ingress]
"""


class TestPolicyClient:
    def test_read_policies(self):
        proc = MagicMock(returncode=0, stdout=CLUSTER_POLICIES, stderr="")
        with patch("netpolprobe.probe.kubectl.subprocess.run", return_value=proc) as run:
            policies = KubectlPolicyClient(kube_context="kind-probe").read_policies(["x"])
        assert [p.ref for p in policies] == ["x/deny-b"]
        assert run.call_args.args[0] == [
            "kubectl",
            "--context",
            "kind-probe",
            "get",
            "networkpolicies",
            "-n",
            "x",
            "-o",
            "yaml",
        ]

    def test_read_empty_namespace(self):
        proc = MagicMock(returncode=0, stdout="apiVersion: v1\nitems: []\nkind: List\n", stderr="")
        with patch("netpolprobe.probe.kubectl.subprocess.run", return_value=proc):
            assert KubectlPolicyClient().read_policies(["x", "y"]) == []

    def test_apply(self, tmp_path):
        proc = MagicMock(returncode=0, stdout="created", stderr="")
        with patch("netpolprobe.probe.kubectl.subprocess.run", return_value=proc) as run:
            KubectlPolicyClient().apply(tmp_path / "deny.yaml")
        assert run.call_args.args[0] == ["kubectl", "apply", "-f", str(tmp_path / "deny.yaml")]

    def test_failure_raises(self):
        proc = MagicMock(returncode=1, stdout="", stderr="Error from server (Forbidden)")
        with patch("netpolprobe.probe.kubectl.subprocess.run", return_value=proc):
            with pytest.raises(InfrastructureError, match="Forbidden"):
                KubectlPolicyClient().read_policies(["x"])
