"""Probe runners — produce observed truth tables, simulated or live."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from netpolprobe.config import ProbeSettings
from netpolprobe.errors import InfrastructureError
from netpolprobe.policy.compiler import PolicyModel
from netpolprobe.policy.evaluator import Connectivity
from netpolprobe.probe.models import (
    CancelToken,
    ExecutionAgent,
    JobOutcome,
    JobResult,
    ProbeJob,
    ProbeSpec,
)
from netpolprobe.topology.models import Topology
from netpolprobe.truthtable.table import TruthTable, build_expected_table, probe_pairs

logger = logging.getLogger(__name__)

# How often the dispatcher checks deadlines and the cancel token
_POLL_INTERVAL = 0.05


def build_jobs(
    topology: Topology,
    spec: ProbeSpec,
    ignore_loopback: bool = False,
) -> list[ProbeJob]:
    """One job per table cell, in table order."""
    return [
        ProbeJob(
            source=topology.workload(src),
            destination=topology.workload(dst),
            port=spec.port,
            protocol=spec.protocol,
            mode=spec.mode,
        )
        for src, dst in probe_pairs(topology, ignore_loopback)
    ]


class SimulatedRunner:
    """Produces a table by evaluating a locally compiled model. No I/O."""

    def __init__(self, model: PolicyModel, workers: int | None = None) -> None:
        self._model = model
        self._workers = workers

    def run(
        self,
        topology: Topology,
        spec: ProbeSpec,
        ignore_loopback: bool = False,
    ) -> TruthTable:
        return build_expected_table(
            self._model,
            topology,
            spec.port,
            spec.protocol,
            ignore_loopback=ignore_loopback,
            workers=self._workers,
        )


class _JobTracker:
    """Start time of each job's running attempt, and the jobs given up on."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started: dict[int, float] = {}
        self._abandoned: set[int] = set()

    def abandon(self, index: int) -> None:
        with self._lock:
            self._abandoned.add(index)

    def is_abandoned(self, index: int) -> bool:
        with self._lock:
            return index in self._abandoned

    def start(self, index: int) -> None:
        with self._lock:
            self._started[index] = time.monotonic()

    def stop(self, index: int) -> None:
        with self._lock:
            self._started.pop(index, None)

    def overdue(self, index: int, timeout: float, now: float) -> bool:
        with self._lock:
            began = self._started.get(index)
        return began is not None and now - began > timeout


class LiveRunner:
    """Produces a table by dispatching one job per cell to an execution agent.

    Jobs run on a bounded pool, each behind its own future. Infrastructure
    errors are retried with exponential backoff. A job that keeps failing,
    hangs past its timeout or is still pending when the run is cancelled
    leaves its cell UNKNOWN; the dispatcher stops waiting for it.
    """

    def __init__(
        self,
        agent: ExecutionAgent,
        settings: ProbeSettings | None = None,
        on_result: Callable[[ProbeJob, Connectivity], None] | None = None,
    ) -> None:
        self._agent = agent
        self._settings = settings or ProbeSettings.load()
        self._on_result = on_result

    def run(
        self,
        topology: Topology,
        spec: ProbeSpec,
        ignore_loopback: bool = False,
        cancel: CancelToken | None = None,
    ) -> TruthTable:
        """Probe every cell. Returns a (possibly partial) table, never raises on job failure."""
        token = cancel or CancelToken()
        table = TruthTable.for_topology(topology, spec.port, spec.protocol, ignore_loopback)
        jobs = build_jobs(topology, spec, ignore_loopback)
        tracker = _JobTracker()
        timeout = self._settings.job_timeout
        logger.info(
            "Probing %d cells on %d/%s via %s with %d workers",
            len(jobs),
            spec.port,
            spec.protocol.value,
            spec.mode.value,
            self._settings.workers,
        )

        pool = ThreadPoolExecutor(max_workers=max(1, self._settings.workers))
        try:
            futures: dict[Future[Connectivity], int] = {
                pool.submit(self._run_job, job, token, tracker, index): index
                for index, job in enumerate(jobs)
            }
            pending = set(futures)
            while pending:
                done, _ = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.discard(future)
                    self._finish(table, jobs[futures[future]], future.result())

                if token.cancelled:
                    for future in pending:
                        self._finish(table, jobs[futures[future]], Connectivity.UNKNOWN)
                    break

                now = time.monotonic()
                for future in list(pending):
                    index = futures[future]
                    if tracker.overdue(index, timeout, now):
                        tracker.abandon(index)
                        job = jobs[index]
                        logger.warning(
                            "Probe %s -> %s still running after %.1fs; giving up on it",
                            job.source.key,
                            job.destination.key,
                            timeout,
                        )
                        pending.discard(future)
                        self._finish(table, job, Connectivity.UNKNOWN)
        finally:
            # Abandoned jobs keep their worker until the agent returns
            pool.shutdown(wait=False, cancel_futures=True)

        if token.cancelled:
            logger.info("Probe run cancelled; unfinished cells left unknown")
        return table

    def _finish(self, table: TruthTable, job: ProbeJob, verdict: Connectivity) -> None:
        table.record(job.source.key, job.destination.key, verdict)
        if self._on_result:
            self._on_result(job, verdict)

    def _run_job(
        self,
        job: ProbeJob,
        token: CancelToken,
        tracker: _JobTracker,
        index: int,
    ) -> Connectivity:
        timeout = self._settings.job_timeout
        attempts = self._settings.retries + 1

        for attempt in range(1, attempts + 1):
            if token.cancelled or tracker.is_abandoned(index):
                return Connectivity.UNKNOWN

            tracker.start(index)
            try:
                result = self._attempt(job, timeout)
            finally:
                tracker.stop(index)
            if result.outcome is JobOutcome.SUCCESS:
                return Connectivity.ALLOWED
            if result.outcome is JobOutcome.REFUSED_OR_TIMEOUT:
                return Connectivity.DENIED

            if attempt < attempts:
                delay = self._settings.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Probe %s -> %s failed (attempt %d/%d): %s; retrying in %.2fs",
                    job.source.key,
                    job.destination.key,
                    attempt,
                    attempts,
                    result.detail,
                    delay,
                )
                if token.wait(delay):
                    return Connectivity.UNKNOWN
            else:
                logger.warning(
                    "Probe %s -> %s gave up after %d attempts: %s",
                    job.source.key,
                    job.destination.key,
                    attempts,
                    result.detail,
                )
        return Connectivity.UNKNOWN

    def _attempt(self, job: ProbeJob, timeout: float) -> JobResult:
        start = time.monotonic()
        try:
            result = self._agent.execute(job, timeout)
        except InfrastructureError as exc:
            return JobResult(outcome=JobOutcome.INFRASTRUCTURE_ERROR, detail=str(exc))
        except Exception as exc:
            logger.exception(
                "Execution agent crashed on %s -> %s", job.source.key, job.destination.key
            )
            return JobResult(
                outcome=JobOutcome.INFRASTRUCTURE_ERROR,
                detail=f"{type(exc).__name__}: {exc}",
            )

        elapsed = time.monotonic() - start
        if elapsed > timeout:
            return JobResult(
                outcome=JobOutcome.INFRASTRUCTURE_ERROR,
                latency=elapsed,
                detail=f"job exceeded {timeout:.1f}s timeout",
            )
        return result


def run_live_table(
    topology: Topology,
    spec: ProbeSpec,
    agent: ExecutionAgent,
    settings: ProbeSettings | None = None,
    ignore_loopback: bool = False,
    cancel: CancelToken | None = None,
) -> TruthTable:
    """Probe ``topology`` through ``agent`` and return the observed table."""
    runner = LiveRunner(agent, settings=settings)
    return runner.run(topology, spec, ignore_loopback=ignore_loopback, cancel=cancel)
