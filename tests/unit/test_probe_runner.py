"""Tests for the simulated and live probe runners."""

from __future__ import annotations

import threading
import time

from netpolprobe.config import ProbeSettings
from netpolprobe.errors import InfrastructureError
from netpolprobe.policy.compiler import compile_model
from netpolprobe.policy.evaluator import Connectivity
from netpolprobe.probe.models import (
    CancelToken,
    ExecutionAgent,
    JobOutcome,
    JobResult,
    ProbeJob,
    ProbeMode,
    ProbeSpec,
)
from netpolprobe.probe.runner import LiveRunner, SimulatedRunner, build_jobs, run_live_table
from netpolprobe.topology.models import Protocol
from netpolprobe.truthtable.compare import compare
from netpolprobe.truthtable.table import build_expected_table


def _settings(**overrides) -> ProbeSettings:
    settings = ProbeSettings(workers=4, job_timeout=5.0, retries=2, backoff=0.0)
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


class FakeAgent:
    """Answers from a lookup of (source, destination) -> outcome or exception."""

    def __init__(self, outcomes=None, default=JobOutcome.SUCCESS) -> None:
        self.outcomes = outcomes or {}
        self.default = default
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def execute(self, job: ProbeJob, timeout: float) -> JobResult:
        with self._lock:
            self.calls.append(job.cell)
        outcome = self.outcomes.get(job.cell, self.default)
        if isinstance(outcome, list):
            with self._lock:
                outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return JobResult(outcome=outcome)


TARGET = ProbeSpec(port=80, protocol=Protocol.TCP, mode=ProbeMode.POD_IP)


def test_fake_agent_satisfies_protocol():
    assert isinstance(FakeAgent(), ExecutionAgent)


def test_simulated_runner_matches_builder(abc_topology, allow_a_to_b):
    model = compile_model([allow_a_to_b], abc_topology)
    table = SimulatedRunner(model, workers=2).run(abc_topology, TARGET)
    assert table == build_expected_table(model, abc_topology, 80, Protocol.TCP, workers=1)


def test_build_jobs(abc_topology):
    jobs = build_jobs(abc_topology, TARGET, ignore_loopback=True)
    assert len(jobs) == 6
    assert jobs[0].cell == ("x/a", "x/b")
    assert jobs[0].address == "10.0.0.2"


def test_job_address_modes(abc_topology):
    b = abc_topology.workload("x/b")
    a = abc_topology.workload("x/a")
    by_name = ProbeJob(a, b, 80, Protocol.TCP, ProbeMode.SERVICE_NAME)
    by_service_ip = ProbeJob(a, b, 80, Protocol.TCP, ProbeMode.SERVICE_IP)
    assert by_name.address == "s-x-b.x.svc.cluster.local"
    # no service IP known: fall back to the pod IP
    assert by_service_ip.address == "10.0.0.2"


def test_outcomes_map_to_verdicts(abc_topology):
    agent = FakeAgent(
        outcomes={
            ("x/a", "x/b"): JobOutcome.REFUSED_OR_TIMEOUT,
            ("x/a", "x/c"): JobOutcome.INFRASTRUCTURE_ERROR,
        }
    )
    table = LiveRunner(agent, settings=_settings()).run(abc_topology, TARGET)

    assert table.get("x/b", "x/a") is Connectivity.ALLOWED
    assert table.get("x/a", "x/b") is Connectivity.DENIED
    assert table.get("x/a", "x/c") is Connectivity.UNKNOWN
    assert table.is_complete


def test_infrastructure_errors_are_retried(abc_topology):
    agent = FakeAgent(
        outcomes={
            ("x/a", "x/b"): [
                InfrastructureError("pod not ready"),
                JobOutcome.INFRASTRUCTURE_ERROR,
                JobOutcome.SUCCESS,
            ],
        }
    )
    table = LiveRunner(agent, settings=_settings(retries=2)).run(abc_topology, TARGET)
    assert table.get("x/a", "x/b") is Connectivity.ALLOWED
    assert agent.calls.count(("x/a", "x/b")) == 3


def test_retries_are_bounded(abc_topology):
    agent = FakeAgent(outcomes={("x/c", "x/a"): InfrastructureError("agent unreachable")})
    table = LiveRunner(agent, settings=_settings(retries=1)).run(abc_topology, TARGET)
    assert table.get("x/c", "x/a") is Connectivity.UNKNOWN
    assert agent.calls.count(("x/c", "x/a")) == 2
    # the failing workload does not abort the rest of the matrix
    assert table.get("x/a", "x/c") is Connectivity.ALLOWED


def test_policy_denials_are_not_retried(abc_topology):
    agent = FakeAgent(default=JobOutcome.REFUSED_OR_TIMEOUT)
    table = LiveRunner(agent, settings=_settings(retries=3)).run(abc_topology, TARGET)
    assert len(agent.calls) == 9
    assert table.counts()[Connectivity.DENIED] == 9


def test_job_overrunning_timeout_is_unknown(abc_topology, monkeypatch):
    clock = [0.0]
    monkeypatch.setattr("netpolprobe.probe.runner.time.monotonic", lambda: clock[0])

    class SlowAgent(FakeAgent):
        def execute(self, job, timeout):
            clock[0] += 10.0
            return super().execute(job, timeout)

    agent = SlowAgent()
    settings = _settings(workers=1, job_timeout=1.0, retries=0)
    table = LiveRunner(agent, settings=settings).run(abc_topology, TARGET)
    assert table.counts()[Connectivity.UNKNOWN] == 9


def test_cancelled_run_returns_partial_table(abc_topology):
    token = CancelToken()

    class CancellingAgent(FakeAgent):
        def execute(self, job, timeout):
            result = super().execute(job, timeout)
            token.cancel()
            return result

    agent = CancellingAgent()
    table = LiveRunner(agent, settings=_settings(workers=1)).run(abc_topology, TARGET, cancel=token)

    assert len(agent.calls) == 1
    assert table.is_complete
    assert table.counts()[Connectivity.UNKNOWN] >= 8


def test_on_result_callback(abc_topology):
    seen: list[tuple[str, str, Connectivity]] = []
    runner = LiveRunner(
        FakeAgent(),
        settings=_settings(),
        on_result=lambda job, verdict: seen.append((*job.cell, verdict)),
    )
    runner.run(abc_topology, TARGET, ignore_loopback=True)
    assert len(seen) == 6


def test_live_and_expected_tables_compare(abc_topology, allow_a_to_b):
    model = compile_model([allow_a_to_b], abc_topology)
    expected = SimulatedRunner(model, workers=1).run(abc_topology, TARGET, ignore_loopback=True)

    agent = FakeAgent(outcomes={("x/c", "x/b"): JobOutcome.SUCCESS})
    observed = run_live_table(
        abc_topology, TARGET, agent, settings=_settings(), ignore_loopback=True
    )

    result = compare(expected, observed)
    assert result.mismatches == [("x/c", "x/b")]


def test_unexpected_agent_exception_does_not_abort_run(abc_topology):
    agent = FakeAgent(outcomes={("x/a", "x/b"): RuntimeError("agent exploded")})
    table = LiveRunner(agent, settings=_settings(retries=1)).run(abc_topology, TARGET)

    assert table.get("x/a", "x/b") is Connectivity.UNKNOWN
    # retried like any other infrastructure error
    assert agent.calls.count(("x/a", "x/b")) == 2
    assert table.counts()[Connectivity.ALLOWED] == 8


class BlockingAgent(FakeAgent):
    """Hangs on ``x/a -> x/b`` until released."""

    def __init__(self) -> None:
        super().__init__()
        self.release = threading.Event()

    def execute(self, job, timeout):
        if job.cell == ("x/a", "x/b"):
            self.release.wait(10)
        return super().execute(job, timeout)


def test_hung_job_is_given_up_after_timeout(abc_topology):
    agent = BlockingAgent()
    settings = _settings(workers=4, job_timeout=0.2, retries=0)
    try:
        began = time.monotonic()
        table = LiveRunner(agent, settings=settings).run(abc_topology, TARGET)
        elapsed = time.monotonic() - began
    finally:
        agent.release.set()

    assert elapsed < 5
    assert table.get("x/a", "x/b") is Connectivity.UNKNOWN
    assert table.counts()[Connectivity.ALLOWED] == 8


def test_cancel_stops_waiting_for_in_flight_jobs(abc_topology):
    agent = BlockingAgent()
    token = CancelToken()
    settings = _settings(workers=2, job_timeout=30.0)
    timer = threading.Timer(0.2, token.cancel)
    timer.start()
    try:
        began = time.monotonic()
        table = LiveRunner(agent, settings=settings).run(abc_topology, TARGET, cancel=token)
        elapsed = time.monotonic() - began
    finally:
        timer.cancel()
        agent.release.set()

    assert elapsed < 5
    assert table.is_complete
    assert table.get("x/a", "x/b") is Connectivity.UNKNOWN
