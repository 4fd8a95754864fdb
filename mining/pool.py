"""
Worker Pool for NIBBLEPOW
Runs N search workers per job cycle and collects the first result.
"""

import time
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence
import logging

import config
from core.errors import InvariantViolation
from core.job import EncodedJob
from .worker import CandidateResult, search_worker

logger = logging.getLogger(__name__)


@dataclass
class SearchCycle:
    """One job cycle: its workers, cancel token and result channel."""
    id: int
    job: EncodedJob
    cancel_event: threading.Event = field(default_factory=threading.Event)
    results: queue.Queue = field(default_factory=queue.Queue)
    threads: List[threading.Thread] = field(default_factory=list)
    hash_counts: List[int] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    @property
    def hashes(self) -> int:
        """Hashes computed so far by this cycle's workers."""
        return sum(self.hash_counts)

    @property
    def elapsed(self) -> float:
        return time.time() - self.started_at


class WorkerPool:
    """Manages the search threads of the active cycle."""

    def __init__(
        self,
        num_workers: int = config.DEFAULT_WORKER_COUNT,
        join_timeout: float = config.WORKER_JOIN_TIMEOUT,
        worker_target: Callable = search_worker,
    ):
        if num_workers < 1:
            raise ValueError(f"Worker count must be positive, got {num_workers}")

        self.num_workers = num_workers
        self.join_timeout = join_timeout
        self.worker_target = worker_target

        self.cycle: Optional[SearchCycle] = None
        self.lock = threading.RLock()
        self._cycle_counter = 0

    @property
    def is_running(self) -> bool:
        with self.lock:
            return self.cycle is not None

    @property
    def hashes(self) -> int:
        """Hashes of the active cycle (0 when idle)."""
        with self.lock:
            return self.cycle.hashes if self.cycle else 0

    def start(self, job: EncodedJob, seeds: Optional[Sequence[bytes]] = None) -> SearchCycle:
        """
        Start a new cycle of workers over `job`.

        Args:
            job: Encoded job shared read-only by all workers
            seeds: Optional per-worker starting nonces (random if omitted)

        Returns:
            The new SearchCycle
        """
        with self.lock:
            if self.cycle is not None:
                raise InvariantViolation(f"Cycle {self.cycle.id} still running; stop it before starting another")

            if seeds is not None and len(seeds) != self.num_workers:
                raise ValueError(f"Expected {self.num_workers} seeds, got {len(seeds)}")

            self._cycle_counter += 1
            cycle = SearchCycle(id=self._cycle_counter, job=job)
            cycle.hash_counts = [0] * self.num_workers

            for i in range(self.num_workers):
                t = threading.Thread(
                    target=self.worker_target,
                    args=(job, cycle.cancel_event, cycle.results),
                    kwargs={
                        'cycle_id': cycle.id,
                        'worker_id': i,
                        'seed': seeds[i] if seeds is not None else None,
                        'hash_counts': cycle.hash_counts,
                    },
                    name=f"nibblepow-worker-{cycle.id}-{i}",
                    daemon=True,
                )
                cycle.threads.append(t)

            self.cycle = cycle
            for t in cycle.threads:
                t.start()

            logger.debug(f"Cycle {cycle.id} started with {self.num_workers} workers")
            return cycle

    def poll_result(self) -> Optional[CandidateResult]:
        """Non-blocking check for the active cycle's first result."""
        with self.lock:
            cycle = self.cycle
        if cycle is None:
            return None

        while True:
            try:
                result = cycle.results.get_nowait()
            except queue.Empty:
                return None

            if result.cycle_id == cycle.id:
                return result
            logger.warning(f"Discarding result from cycle {result.cycle_id} (active cycle {cycle.id})")

    def any_alive(self) -> bool:
        """Whether any worker of the active cycle is still running."""
        with self.lock:
            cycle = self.cycle
        if cycle is None:
            return False
        return any(t.is_alive() for t in cycle.threads)

    def stop(self) -> int:
        """
        Cancel the active cycle and wait for every worker to exit.

        The cycle's cancel token and result queue are discarded with it,
        along with any results still queued.

        Returns:
            Hashes computed by the stopped cycle
        """
        with self.lock:
            cycle = self.cycle
            if cycle is None:
                return 0

            cycle.cancel_event.set()
            deadline = time.time() + self.join_timeout
            for t in cycle.threads:
                t.join(timeout=max(deadline - time.time(), 0))

            stuck = [t.name for t in cycle.threads if t.is_alive()]
            if stuck:
                raise InvariantViolation(f"Workers did not stop within {self.join_timeout}s: {', '.join(stuck)}")

            self.cycle = None
            hashes = cycle.hashes
            logger.debug(f"Cycle {cycle.id} stopped after {hashes:,} hashes in {cycle.elapsed:.2f}s")
            return hashes
