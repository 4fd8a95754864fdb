"""
Search Coordinator for NIBBLEPOW
Polls the job source, restarts the worker pool on change and submits winners.

States:
    IDLE        no search running (no job yet, or the held job is solved)
    RUNNING     workers are grinding the held job
    CANCELLING  new job text seen; draining the old cycle
    SUBMITTING  a result arrived; draining and handing it to the submitter
"""

import time
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
import logging

import config
from core.errors import TransientNetworkError, MalformedJobError, InvariantViolation
from core.job import JobDescriptor, EncodedJob, encode_job
from .pool import WorkerPool
from .worker import CandidateResult

logger = logging.getLogger(__name__)


class MinerState(Enum):
    """Coordinator state."""
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"
    SUBMITTING = "submitting"


def format_hashrate(hashrate: float) -> str:
    """Human readable hashrate."""
    if hashrate >= 1_000_000_000:
        return f"{hashrate/1_000_000_000:.2f} GH/s"
    elif hashrate >= 1_000_000:
        return f"{hashrate/1_000_000:.2f} MH/s"
    elif hashrate >= 1_000:
        return f"{hashrate/1_000:.2f} KH/s"
    return f"{hashrate:.0f} H/s"


@dataclass
class MinerStats:
    """Counters for a coordinator run."""
    started_at: float = field(default_factory=time.time)
    cycles: int = 0
    restarts: int = 0
    solutions: int = 0
    submitted: int = 0
    submit_failures: int = 0
    fetch_failures: int = 0
    malformed_jobs: int = 0
    hashes: int = 0

    @property
    def elapsed(self) -> float:
        return time.time() - self.started_at

    @property
    def hashrate(self) -> float:
        """Average hashes per second since start."""
        elapsed = self.elapsed
        return self.hashes / elapsed if elapsed > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            'elapsed': round(self.elapsed, 2),
            'cycles': self.cycles,
            'restarts': self.restarts,
            'solutions': self.solutions,
            'submitted': self.submitted,
            'submit_failures': self.submit_failures,
            'fetch_failures': self.fetch_failures,
            'malformed_jobs': self.malformed_jobs,
            'hashes': self.hashes,
            'hashrate': round(self.hashrate, 2),
        }


class Coordinator:
    """
    Drives job cycles over a WorkerPool.

    Usage:
        client = CoordinatorClient("http://127.0.0.1:9608")
        coordinator = Coordinator(client.fetch_job, client.submit_solution, num_workers=16)
        coordinator.run()
    """

    def __init__(
        self,
        fetch_job: Callable[[], str],
        submit_solution: Callable[[CandidateResult], Any],
        num_workers: int = config.DEFAULT_WORKER_COUNT,
        poll_interval: float = config.POLL_INTERVAL,
        pool: Optional[WorkerPool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the coordinator.

        Args:
            fetch_job: Returns the current raw job text; raises TransientNetworkError
            submit_solution: Hands a result to the coordinator; raises TransientNetworkError
            num_workers: Search threads per cycle
            poll_interval: Seconds between ticks
            pool: Worker pool (built from num_workers if omitted)
            clock: Time source for poll backoff
        """
        self._fetch_job = fetch_job
        self._submit_solution = submit_solution
        self.poll_interval = poll_interval
        self.pool = pool or WorkerPool(num_workers=num_workers)
        self._clock = clock

        self.state = MinerState.IDLE
        self.job: Optional[JobDescriptor] = None
        self.encoded: Optional[EncodedJob] = None
        self.stats = MinerStats()

        # Solution whose submission failed; retried while its job is current
        self._pending: Optional[CandidateResult] = None
        # Last job text that failed to encode; ignored until the text changes
        self._rejected_raw: Optional[str] = None

        self._fetch_failures = 0
        self._next_poll_at = 0.0
        self._last_stats_at = time.time()
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self, max_solutions: int = 0) -> MinerStats:
        """
        Tick until stop() is called or max_solutions are submitted.

        Args:
            max_solutions: Stop after this many accepted submissions (0 = forever)

        Returns:
            Run statistics
        """
        self._stop.clear()
        logger.info(f"Coordinator started: {self.pool.num_workers} workers, poll every {self.poll_interval}s")

        try:
            while not self._stop.is_set():
                self.step()
                if max_solutions and self.stats.submitted >= max_solutions:
                    logger.info(f"Reached {max_solutions} submitted solution(s); stopping")
                    break
                self._maybe_log_stats()
                self._stop.wait(self.poll_interval)
        finally:
            self.shutdown()
            logger.info(f"Coordinator stopped: {self.stats.to_dict()}")

        return self.stats

    def stop(self):
        """Ask run() to return after the current tick."""
        self._stop.set()

    def shutdown(self):
        """Drain any running cycle and return to IDLE."""
        if self.pool.is_running:
            self._drain()
        self.state = MinerState.IDLE

    def step(self):
        """Run one coordinator tick."""
        if self.state == MinerState.IDLE:
            self._tick_idle()
        elif self.state == MinerState.RUNNING:
            self._tick_running()
        else:
            # CANCELLING and SUBMITTING complete within the tick that entered them
            raise InvariantViolation(f"Tick started in transient state {self.state.value}")

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _tick_idle(self):
        text = self._poll_job()
        if text is None:
            return

        if self.job is not None and self.job.same_as(text):
            if self._pending is not None:
                self._submit(self._pending)
            return

        if text == self._rejected_raw:
            return

        if self._pending is not None:
            logger.warning("Dropping unsubmitted solution; the coordinator moved to a new job")
            self._pending = None

        self._start_job(text)

    def _tick_running(self):
        # Liveness first: a worker always queues its result before exiting
        alive = self.pool.any_alive()
        result = self.pool.poll_result()

        if result is not None:
            self._on_result(result)
            return

        if not alive:
            raise InvariantViolation("All workers exited without a result or a cancellation")

        text = self._poll_job()
        if text is None or self.job.same_as(text):
            return

        self.state = MinerState.CANCELLING
        logger.info("External source indicated to restart jobs.")
        self._drain()
        self.stats.restarts += 1
        self._start_job(text)

    def _on_result(self, result: CandidateResult):
        self.state = MinerState.SUBMITTING
        self._drain()
        self.stats.solutions += 1
        logger.info(
            f"Found a solution! worker={result.worker_id} zeroes={result.zeroes} "
            f"difficulty={result.difficulty} nonce={result.nonce.hex()}"
        )
        self._submit(result)
        self.state = MinerState.IDLE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _start_job(self, text: str) -> bool:
        """Encode `text` and start a cycle over it; IDLE if it is malformed."""
        descriptor = JobDescriptor(raw=text)
        try:
            encoded = encode_job(descriptor)
        except MalformedJobError as e:
            self.stats.malformed_jobs += 1
            self._rejected_raw = text
            self.job = None
            self.encoded = None
            self.state = MinerState.IDLE
            logger.error(f"Rejected malformed job: {e}")
            return False

        self._rejected_raw = None
        self.job = descriptor
        self.encoded = encoded

        cycle = self.pool.start(encoded)
        self.stats.cycles += 1
        self.state = MinerState.RUNNING
        logger.info(
            f"Updated! New hashing cycle {cycle.id} for job {descriptor.content_id[:16]} "
            f"(zeroes>={encoded.target.zeroes}, difficulty<{encoded.target.difficulty})"
        )
        return True

    def _drain(self):
        self.stats.hashes += self.pool.stop()

    def _submit(self, result: CandidateResult) -> bool:
        try:
            reply = self._submit_solution(result)
        except TransientNetworkError as e:
            self.stats.submit_failures += 1
            self._pending = result
            logger.error(f"Failed to submit solution, will retry while the job is current: {e}")
            return False

        self._pending = None
        self.stats.submitted += 1
        logger.info(f"Solution submitted (reply: {reply})")
        return True

    def _poll_job(self) -> Optional[str]:
        """Fetch job text, backing off after consecutive failures."""
        now = self._clock()
        if now < self._next_poll_at:
            return None

        try:
            text = self._fetch_job()
        except TransientNetworkError as e:
            delay = config.backoff_delay(self._fetch_failures, base=self.poll_interval)
            self._fetch_failures += 1
            self.stats.fetch_failures += 1
            self._next_poll_at = now + delay
            logger.warning(f"Job fetch failed ({e}); next poll in {delay:.1f}s")
            return None

        if self._fetch_failures:
            logger.info(f"Job source reachable again after {self._fetch_failures} failure(s)")
        self._fetch_failures = 0
        self._next_poll_at = 0.0
        return text

    def _maybe_log_stats(self):
        now = time.time()
        if now - self._last_stats_at < config.STATS_INTERVAL:
            return
        self._last_stats_at = now

        total = self.stats.hashes + self.pool.hashes
        elapsed = self.stats.elapsed
        hashrate = total / elapsed if elapsed > 0 else 0
        logger.info(
            f"{format_hashrate(hashrate)} | Solutions: {self.stats.submitted}/{self.stats.solutions} "
            f"| Restarts: {self.stats.restarts}"
        )
