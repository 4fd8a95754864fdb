"""
Tests for NIBBLEPOW search workers, worker pool and coordinator.
"""

import pytest
import sys
import os
import json
import queue
import threading
import time
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.crypto import sha256d
from core.difficulty import get_difficulty
from core.errors import TransientNetworkError, InvariantViolation
from core.job import JobDescriptor, encode_job
from mining.worker import CandidateResult, search_worker
from mining.pool import WorkerPool
from mining.coordinator import Coordinator, MinerState, MinerStats, format_hashrate


U128_MAX = 2 ** 128 - 1

# Scores top out at 63 zero nibbles, so 64 can never be beaten
IMPOSSIBLE_ZEROES = 64

SEED = bytes(range(16))


def make_job_text(zeroes: int, difficulty: int, content: str = "2c58571ed350979233da4dea0846ff50") -> str:
    """Job text in the coordinator's format."""
    return json.dumps({
        'fields': [
            {'bytes': content},
            {'int': 7745},
            {'bytes': '00' * 32},
            {'int': zeroes},
            {'int': difficulty},
            {'int': 61545000},
        ],
        'constructor': 0,
    }, separators=(',', ':'))


def make_job(zeroes: int, difficulty: int, **kwargs):
    return encode_job(JobDescriptor(raw=make_job_text(zeroes, difficulty, **kwargs)))


EASY_TEXT = make_job_text(0, U128_MAX)
HARD_TEXT = make_job_text(IMPOSSIBLE_ZEROES, 0)


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeSource:
    """Scripted job source and submitter for the coordinator."""

    def __init__(self, text: str):
        self.current = text
        self.fetches = 0
        self.submitted = []
        self.submit_failures = 0

    def fetch(self) -> str:
        self.fetches += 1
        if isinstance(self.current, Exception):
            raise self.current
        return self.current

    def submit(self, result: CandidateResult) -> dict:
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise TransientNetworkError("submit refused")
        self.submitted.append(result)
        return {'accepted': True}


class TestSearchWorker:
    """Test the per-thread grinding loop."""

    def test_easy_target_first_hash(self):
        """Target (0, max) is beaten by the very first nonce."""
        job = make_job(0, U128_MAX)
        results = queue.Queue()

        result = search_worker(job, threading.Event(), results, seed=SEED, max_iterations=1)

        assert result is not None
        assert result.nonce == SEED
        assert results.get_nowait() == result

        blob = bytearray(job.blob)
        blob[4:20] = SEED
        assert result.hash == sha256d(bytes(blob))
        assert (result.zeroes, result.difficulty) == get_difficulty(result.hash)

    def test_moderate_target_bounded(self):
        """A target beaten by about half of all hashes wins quickly from a fixed seed."""
        job = make_job(0, 0x8000)
        results = queue.Queue()

        result = search_worker(job, threading.Event(), results, seed=SEED, max_iterations=200)

        assert result is not None
        assert job.target.is_beaten_by(result.zeroes, result.difficulty)

        # The reported nonce reproduces the reported hash
        blob = bytearray(job.blob)
        blob[4:20] = result.nonce
        assert sha256d(bytes(blob)) == result.hash

    def test_result_tagged_with_cycle(self):
        """Results carry their cycle and worker ids."""
        job = make_job(0, U128_MAX)
        result = search_worker(job, threading.Event(), queue.Queue(), cycle_id=7, worker_id=3, seed=SEED)

        assert result.cycle_id == 7
        assert result.worker_id == 3

    def test_impossible_target(self):
        """No result within the iteration bound; nothing is queued."""
        job = make_job(IMPOSSIBLE_ZEROES, 0)
        results = queue.Queue()
        counts = [0]

        result = search_worker(job, threading.Event(), results, seed=SEED, hash_counts=counts, max_iterations=100)

        assert result is None
        assert results.empty()
        assert counts[0] == 100

    def test_cancelled_before_start(self):
        """A set cancel event stops the worker without hashing."""
        cancel = threading.Event()
        cancel.set()
        results = queue.Queue()
        counts = [0]

        assert search_worker(make_job(0, U128_MAX), cancel, results, hash_counts=counts) is None
        assert results.empty()
        assert counts[0] == 0

    def test_job_blob_untouched(self):
        """Workers mutate a private copy only."""
        job = make_job(IMPOSSIBLE_ZEROES, 0)
        original = job.blob

        search_worker(job, threading.Event(), queue.Queue(), seed=SEED, max_iterations=10)

        assert job.blob == original

    def test_bad_seed_length(self):
        """Seeds must be 16 bytes."""
        with pytest.raises(ValueError):
            search_worker(make_job(0, U128_MAX), threading.Event(), queue.Queue(), seed=b'\x00' * 8)

    def test_submission_body(self):
        """Submission body serializes raw bytes as integer arrays."""
        result = CandidateResult(nonce=SEED, hash=b'\x01' * 32, zeroes=3, difficulty=1234)
        body = result.to_submission()

        assert body == {
            'nonce': list(range(16)),
            'answer': [1] * 32,
            'difficulty': 1234,
            'zeroes': 3,
        }


class TestWorkerPool:
    """Test cycle lifecycle and result isolation."""

    def test_stop_drains_all_workers(self):
        """After cancellation every worker exits promptly."""
        pool = WorkerPool(num_workers=4)
        cycle = pool.start(make_job(IMPOSSIBLE_ZEROES, 0))

        assert pool.is_running
        assert pool.any_alive()

        started = time.time()
        hashes = pool.stop()

        assert time.time() - started < 2.0
        assert all(not t.is_alive() for t in cycle.threads)
        assert cycle.cancel_event.is_set()
        assert hashes >= 0
        assert not pool.is_running

    def test_first_result_returned(self):
        """Easy jobs deliver a result for the active cycle."""
        pool = WorkerPool(num_workers=2)
        cycle = pool.start(make_job(0, U128_MAX))

        assert wait_for(lambda: not cycle.results.empty())
        result = pool.poll_result()
        pool.stop()

        assert result is not None
        assert result.cycle_id == cycle.id

    def test_no_stale_results_across_cycles(self):
        """Results queued by a stopped cycle never reach the next one."""
        pool = WorkerPool(num_workers=2)
        first = pool.start(make_job(0, U128_MAX))
        assert wait_for(lambda: not first.results.empty())
        pool.stop()

        second = pool.start(make_job(IMPOSSIBLE_ZEROES, 0))
        try:
            assert second.id != first.id
            assert second.results is not first.results
            assert second.cancel_event is not first.cancel_event
            assert pool.poll_result() is None
        finally:
            pool.stop()

    def test_foreign_cycle_result_discarded(self):
        """A result tagged with another cycle id is ignored."""
        pool = WorkerPool(num_workers=1)
        cycle = pool.start(make_job(IMPOSSIBLE_ZEROES, 0))
        try:
            cycle.results.put(CandidateResult(nonce=SEED, hash=b'\x00' * 32, zeroes=1, difficulty=1, cycle_id=cycle.id - 1))
            assert pool.poll_result() is None
        finally:
            pool.stop()

    def test_cannot_overlap_cycles(self):
        """Starting a cycle while one runs is an invariant violation."""
        pool = WorkerPool(num_workers=1)
        pool.start(make_job(IMPOSSIBLE_ZEROES, 0))
        try:
            with pytest.raises(InvariantViolation):
                pool.start(make_job(IMPOSSIBLE_ZEROES, 0))
        finally:
            pool.stop()

    def test_deterministic_seeds(self):
        """Explicit seeds make cycles reproducible."""
        pool = WorkerPool(num_workers=2)
        cycle = pool.start(make_job(0, U128_MAX), seeds=[SEED, bytes(16)])

        assert wait_for(lambda: cycle.results.qsize() == 2)
        pool.stop()

        nonces = {cycle.results.get_nowait().nonce for _ in range(2)}
        assert nonces == {SEED, bytes(16)}

    def test_invalid_worker_count(self):
        """At least one worker is required."""
        with pytest.raises(ValueError):
            WorkerPool(num_workers=0)


class TestCoordinator:
    """Test the job-cycle state machine."""

    def test_identical_job_does_not_restart(self):
        """Byte-identical polls keep the same cycle running."""
        source = FakeSource(HARD_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=2, poll_interval=0.01)
        try:
            coordinator.step()
            assert coordinator.state == MinerState.RUNNING
            cycle_id = coordinator.pool.cycle.id

            for _ in range(5):
                coordinator.step()

            assert coordinator.state == MinerState.RUNNING
            assert coordinator.pool.cycle.id == cycle_id
            assert coordinator.stats.cycles == 1
            assert coordinator.stats.restarts == 0
        finally:
            coordinator.shutdown()

    def test_changed_job_restarts_once(self):
        """One byte of difference triggers exactly one cancel-drain-reload."""
        source = FakeSource(HARD_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=2, poll_interval=0.01)
        try:
            coordinator.step()
            old_cycle = coordinator.pool.cycle

            source.current = make_job_text(IMPOSSIBLE_ZEROES, 0, content="2c58571ed350979233da4dea0846ff51")
            coordinator.step()

            assert coordinator.state == MinerState.RUNNING
            assert coordinator.stats.restarts == 1
            assert coordinator.stats.cycles == 2
            assert all(not t.is_alive() for t in old_cycle.threads)
            assert coordinator.pool.cycle.id != old_cycle.id
            assert coordinator.job.raw == source.current

            coordinator.step()
            assert coordinator.stats.restarts == 1
        finally:
            coordinator.shutdown()

        assert not coordinator.pool.is_running

    def test_solution_submitted_then_idle(self):
        """A result is submitted once and the solved job does not re-trigger."""
        source = FakeSource(EASY_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=2, poll_interval=0.01)

        coordinator.step()
        assert wait_for(lambda: (coordinator.step(), coordinator.state)[1] == MinerState.IDLE)

        assert len(source.submitted) == 1
        assert coordinator.stats.solutions == 1
        assert coordinator.stats.submitted == 1
        assert not coordinator.pool.is_running
        assert coordinator.job.raw == EASY_TEXT

        for _ in range(3):
            coordinator.step()
        assert coordinator.state == MinerState.IDLE
        assert coordinator.stats.cycles == 1
        assert len(source.submitted) == 1

    def test_new_job_after_solution(self):
        """Changed text after a solve starts a new cycle."""
        source = FakeSource(EASY_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)

        coordinator.step()
        assert wait_for(lambda: (coordinator.step(), coordinator.state)[1] == MinerState.IDLE)

        source.current = HARD_TEXT
        try:
            coordinator.step()
            assert coordinator.state == MinerState.RUNNING
            assert coordinator.stats.cycles == 2
        finally:
            coordinator.shutdown()

    def test_failed_submission_retried(self):
        """A refused submission is retried while the job is unchanged."""
        source = FakeSource(EASY_TEXT)
        source.submit_failures = 1
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)

        coordinator.step()
        assert wait_for(lambda: (coordinator.step(), coordinator.state)[1] == MinerState.IDLE)
        assert coordinator.stats.submit_failures == 1
        assert source.submitted == []

        coordinator.step()
        assert len(source.submitted) == 1
        assert coordinator.stats.submitted == 1

    def test_pending_solution_dropped_on_new_job(self):
        """A solution for a replaced job is never submitted."""
        source = FakeSource(EASY_TEXT)
        source.submit_failures = 1
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)

        coordinator.step()
        assert wait_for(lambda: (coordinator.step(), coordinator.state)[1] == MinerState.IDLE)

        source.current = HARD_TEXT
        try:
            coordinator.step()
            assert source.submitted == []
            assert coordinator.state == MinerState.RUNNING
        finally:
            coordinator.shutdown()

    def test_malformed_job_logged_once(self):
        """Malformed jobs leave the coordinator idle until the text changes."""
        source = FakeSource("not a job")
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)

        coordinator.step()
        coordinator.step()
        assert coordinator.state == MinerState.IDLE
        assert coordinator.stats.malformed_jobs == 1
        assert coordinator.job is None

        source.current = HARD_TEXT
        try:
            coordinator.step()
            assert coordinator.state == MinerState.RUNNING
        finally:
            coordinator.shutdown()

    def test_deeply_nested_job_is_malformed(self):
        """Job text too deep to parse leaves the coordinator idle."""
        source = FakeSource('[' * 100000 + ']' * 100000)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)

        coordinator.step()

        assert coordinator.state == MinerState.IDLE
        assert coordinator.stats.malformed_jobs == 1
        assert not coordinator.pool.is_running

    def test_malformed_replacement_cancels_running_job(self):
        """A malformed new job still retires the stale search."""
        source = FakeSource(HARD_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)

        coordinator.step()
        source.current = "{}"
        coordinator.step()

        assert coordinator.state == MinerState.IDLE
        assert not coordinator.pool.is_running
        assert coordinator.stats.malformed_jobs == 1

    def test_fetch_failures_back_off(self):
        """Failed polls are retried after a growing delay."""
        now = [1000.0]
        source = FakeSource(TransientNetworkError("down"))
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.1, clock=lambda: now[0])

        coordinator.step()
        assert source.fetches == 1
        assert coordinator.stats.fetch_failures == 1

        coordinator.step()
        assert source.fetches == 1

        now[0] = 1000.15
        coordinator.step()
        assert source.fetches == 2

        # Second failure doubles the delay
        now[0] = 1000.3
        coordinator.step()
        assert source.fetches == 2

        source.current = HARD_TEXT
        now[0] = 1000.4
        try:
            coordinator.step()
            assert source.fetches == 3
            assert coordinator.state == MinerState.RUNNING
        finally:
            coordinator.shutdown()

    def test_fetch_failure_while_running_keeps_search(self):
        """A failed poll during a search leaves the workers alone."""
        source = FakeSource(HARD_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)
        try:
            coordinator.step()
            source.current = TransientNetworkError("down")
            coordinator.step()

            assert coordinator.state == MinerState.RUNNING
            assert coordinator.stats.restarts == 0
        finally:
            coordinator.shutdown()

    def test_workers_vanishing_is_invariant_violation(self):
        """Workers exiting without a result or cancellation is fatal."""
        pool = WorkerPool(num_workers=2, worker_target=lambda *args, **kwargs: None)
        source = FakeSource(HARD_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, pool=pool, poll_interval=0.01)

        coordinator.step()
        assert wait_for(lambda: not pool.any_alive())

        with pytest.raises(InvariantViolation):
            coordinator.step()

    def test_run_until_solution(self):
        """run() returns after the requested number of submissions."""
        source = FakeSource(EASY_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=2, poll_interval=0.01)

        stats = coordinator.run(max_solutions=1)

        assert stats.submitted == 1
        assert len(source.submitted) == 1
        assert coordinator.state == MinerState.IDLE
        assert not coordinator.pool.is_running

    def test_run_logs_final_stats(self, caplog):
        """The stopping log line carries the run counters."""
        source = FakeSource(EASY_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=1, poll_interval=0.01)

        with caplog.at_level(logging.INFO, logger='mining.coordinator'):
            stats = coordinator.run(max_solutions=1)

        stopped = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Coordinator stopped")]
        assert len(stopped) == 1
        assert "'submitted': 1" in stopped[0]
        assert "'cycles': 1" in stopped[0]
        assert stats.to_dict()['submitted'] == 1

    def test_stop_from_another_thread(self):
        """stop() ends run() and drains the workers."""
        source = FakeSource(HARD_TEXT)
        coordinator = Coordinator(source.fetch, source.submit, num_workers=2, poll_interval=0.01)

        runner = threading.Thread(target=coordinator.run)
        runner.start()
        assert wait_for(lambda: coordinator.stats.cycles == 1)

        coordinator.stop()
        runner.join(timeout=5)

        assert not runner.is_alive()
        assert not coordinator.pool.is_running


class TestStats:
    """Test run statistics."""

    def test_format_hashrate(self):
        assert format_hashrate(12) == "12 H/s"
        assert format_hashrate(1_500) == "1.50 KH/s"
        assert format_hashrate(2_500_000) == "2.50 MH/s"
        assert format_hashrate(3_000_000_000) == "3.00 GH/s"

    def test_stats_to_dict(self):
        """Stats serialize every counter plus derived rates."""
        stats = MinerStats(started_at=time.time() - 10, cycles=3, restarts=2, solutions=1, submitted=1, hashes=5000)
        data = stats.to_dict()

        assert data['cycles'] == 3
        assert data['restarts'] == 2
        assert data['hashes'] == 5000
        assert data['malformed_jobs'] == 0
        assert 400 < data['hashrate'] <= 500
        assert data['elapsed'] >= 10
