"""
NIBBLEPOW Search Worker
Grinds nonces over a private copy of an encoded job.
"""

from dataclasses import dataclass
from typing import Optional, List

import config
from core.crypto import sha256d
from core.difficulty import get_difficulty, beats_target
from core.job import EncodedJob
from core.nonce import increment_nonce, random_nonce


@dataclass(frozen=True)
class CandidateResult:
    """A nonce whose double hash beats the job target."""
    nonce: bytes
    hash: bytes
    zeroes: int
    difficulty: int
    cycle_id: int = 0
    worker_id: int = 0

    def to_submission(self) -> dict:
        """JSON body for the coordinator's /submit endpoint."""
        return {
            'nonce': list(self.nonce),
            'answer': list(self.hash),
            'difficulty': self.difficulty,
            'zeroes': self.zeroes,
        }


def search_worker(
    job: EncodedJob,
    cancel_event,
    result_queue,
    cycle_id: int = 0,
    worker_id: int = 0,
    seed: Optional[bytes] = None,
    hash_counts: Optional[List[int]] = None,
    max_iterations: Optional[int] = None,
) -> Optional[CandidateResult]:
    """
    Search from a starting nonce until a winner is found or cancel_event is set.

    Args:
        job: Encoded job; only a private copy of its nonce region is mutated
        cancel_event: threading.Event owned by the current cycle
        result_queue: Queue the winning CandidateResult is put on
        cycle_id: Cycle tag attached to the result
        worker_id: Index of this worker, also its slot in hash_counts
        seed: Starting nonce (random if None)
        hash_counts: Shared per-worker hash counters, updated every batch
        max_iterations: Stop after this many hashes (None = unbounded)

    Returns:
        The emitted CandidateResult, or None when stopped without one
    """
    start = config.NONCE_OFFSET
    end = start + config.NONCE_LENGTH

    if seed is None:
        seed = random_nonce()
    if len(seed) != config.NONCE_LENGTH:
        raise ValueError(f"Seed must be {config.NONCE_LENGTH} bytes, got {len(seed)}")

    blob = bytearray(job.blob)
    blob[start:end] = seed
    target = job.target
    count = 0

    while not cancel_event.is_set():
        if max_iterations is not None and count >= max_iterations:
            break

        hash_bytes = sha256d(blob)
        count += 1
        zeroes, difficulty = get_difficulty(hash_bytes)

        if beats_target(zeroes, difficulty, target):
            result = CandidateResult(
                nonce=bytes(blob[start:end]),
                hash=hash_bytes,
                zeroes=zeroes,
                difficulty=difficulty,
                cycle_id=cycle_id,
                worker_id=worker_id,
            )
            if hash_counts is not None:
                hash_counts[worker_id] = count
            result_queue.put(result)
            return result

        increment_nonce(blob, start, end)

        # Update count periodically
        if hash_counts is not None and count % config.WORKER_BATCH_SIZE == 0:
            hash_counts[worker_id] = count

    if hash_counts is not None:
        hash_counts[worker_id] = count
    return None
