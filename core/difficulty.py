"""
NIBBLEPOW Difficulty
Leading-zero-nibble scoring of double hashes.
"""

from dataclasses import dataclass
from typing import Tuple

import config

# Returned when every byte of the hash is zero
ALL_ZERO_SCORE = (32, 0)


@dataclass(frozen=True)
class DifficultyTarget:
    """Score a candidate hash must beat."""
    zeroes: int
    difficulty: int

    def __post_init__(self):
        if self.zeroes < 0 or self.difficulty < 0:
            raise ValueError(f"Difficulty target must be unsigned: {self}")

    def is_beaten_by(self, zeroes: int, difficulty: int) -> bool:
        """Check a (zeroes, difficulty) score against this target."""
        return beats_target(zeroes, difficulty, self)


def get_difficulty(hash_bytes: bytes) -> Tuple[int, int]:
    """
    Score a 32-byte hash.

    Every leading zero byte counts as two zero nibbles. The first nonzero
    byte B decides the rest:
    - B < 16 adds one more zero nibble; difficulty is the next 16 bits
      starting at B's low nibble (B*4096 + next*16 + next2//16)
    - otherwise difficulty is B*256 + next

    An all-zero hash scores (32, 0).

    Args:
        hash_bytes: 32-byte hash

    Returns:
        (zero_nibbles, difficulty) - lower difficulty is harder
    """
    if len(hash_bytes) != config.HASH_LENGTH:
        raise ValueError(f"Expected a hash of length {config.HASH_LENGTH}, but got {len(hash_bytes)}")

    # Bytes past the end read as zero
    padded = bytes(hash_bytes) + b'\x00\x00'
    zeroes = 0

    for i, byte in enumerate(hash_bytes):
        if byte == 0:
            zeroes += 2
            continue

        if byte < 16:
            return zeroes + 1, byte * 4096 + padded[i + 1] * 16 + padded[i + 2] // 16
        return zeroes, byte * 256 + padded[i + 1]

    return ALL_ZERO_SCORE


def beats_target(zeroes: int, difficulty: int, target: DifficultyTarget) -> bool:
    """
    More zero nibbles wins; at equal zeroes a lower difficulty wins.
    Equal scores do not beat the target.
    """
    if zeroes > target.zeroes:
        return True
    return zeroes == target.zeroes and difficulty < target.difficulty
