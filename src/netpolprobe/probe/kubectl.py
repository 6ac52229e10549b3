"""Kubectl integration — agnhost connect probes and cluster NetworkPolicies."""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Iterable
from pathlib import Path

from netpolprobe.errors import InfrastructureError
from netpolprobe.policy.loader import load_policies_from_string
from netpolprobe.policy.models import NetworkPolicy
from netpolprobe.probe.models import JobOutcome, JobResult, ProbeJob

logger = logging.getLogger(__name__)

# agnhost connect prints one of these when the attempt was actively stopped
_DENIED_MARKERS = ("REFUSED", "TIMEOUT")

# Seconds agnhost itself waits for the connection, kept below the job timeout
_CONNECT_TIMEOUT = 1


def _run_kubectl(cmd: list[str], timeout: float) -> subprocess.CompletedProcess[str]:
    """Run ``cmd``; undecodable output bytes are replaced, never raised."""
    logger.debug("Running %s", " ".join(cmd))
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise InfrastructureError(f"{cmd[0]} exceeded {timeout:.1f}s") from exc
    except (FileNotFoundError, OSError) as exc:
        raise InfrastructureError(f"cannot run {cmd[0]}: {exc}") from exc


class KubectlAgent:
    """Executes probe jobs with ``kubectl exec ... /agnhost connect``.

    The source container is named ``cont-<port>-<protocol>`` in the source
    pod, matching the layout of synthetic probe topologies.
    """

    def __init__(self, kube_context: str = "", kubectl: str = "kubectl") -> None:
        self._kube_context = kube_context
        self._kubectl = kubectl

    def command(self, job: ProbeJob) -> list[str]:
        """Build the kubectl argv for ``job``."""
        cmd = [self._kubectl]
        if self._kube_context:
            cmd += ["--context", self._kube_context]
        cmd += [
            "exec",
            job.source.name,
            "-n",
            job.source.namespace,
            "-c",
            f"cont-{job.port}-{job.protocol.value.lower()}",
            "--",
            "/agnhost",
            "connect",
            f"{job.address}:{job.port}",
            f"--timeout={_CONNECT_TIMEOUT}s",
            f"--protocol={job.protocol.value.lower()}",
        ]
        return cmd

    def execute(self, job: ProbeJob, timeout: float) -> JobResult:
        start = time.monotonic()
        proc = _run_kubectl(self.command(job), timeout)
        latency = time.monotonic() - start
        return classify(proc.returncode, proc.stdout, proc.stderr, latency)


class KubectlPolicyClient:
    """Reads and creates NetworkPolicies in the cluster through kubectl."""

    def __init__(
        self,
        kube_context: str = "",
        kubectl: str = "kubectl",
        timeout: float = 30.0,
    ) -> None:
        self._kube_context = kube_context
        self._kubectl = kubectl
        self._timeout = timeout

    def _command(self, *args: str) -> list[str]:
        cmd = [self._kubectl]
        if self._kube_context:
            cmd += ["--context", self._kube_context]
        return cmd + list(args)

    def _check(self, *args: str) -> str:
        proc = _run_kubectl(self._command(*args), self._timeout)
        if proc.returncode != 0:
            detail = proc.stderr.strip() or f"exit code {proc.returncode}"
            raise InfrastructureError(f"kubectl {args[0]} {args[1]} failed: {detail}")
        return proc.stdout

    def read_policies(self, namespaces: Iterable[str]) -> list[NetworkPolicy]:
        """Every NetworkPolicy currently present in ``namespaces``."""
        policies: list[NetworkPolicy] = []
        for namespace in namespaces:
            output = self._check("get", "networkpolicies", "-n", namespace, "-o", "yaml")
            found = load_policies_from_string(output)
            logger.info("Read %d policies from namespace %s", len(found), namespace)
            policies.extend(found)
        return policies

    def apply(self, path: str | Path) -> None:
        """Create or update the policies in ``path`` (file or directory)."""
        self._check("apply", "-f", str(path))
        logger.info("Applied policies from %s", path)


def classify(returncode: int, stdout: str, stderr: str, latency: float = 0.0) -> JobResult:
    """Map a finished ``agnhost connect`` invocation to a job outcome."""
    output = f"{stdout}\n{stderr}".strip()
    if returncode == 0:
        return JobResult(outcome=JobOutcome.SUCCESS, latency=latency, detail=output)
    if any(marker in output for marker in _DENIED_MARKERS):
        return JobResult(
            outcome=JobOutcome.REFUSED_OR_TIMEOUT,
            latency=latency,
            detail=output,
        )
    # NotFound pods, exec failures, unreachable API server, unknown agnhost errors
    return JobResult(
        outcome=JobOutcome.INFRASTRUCTURE_ERROR,
        latency=latency,
        detail=output or f"exit code {returncode}",
    )
