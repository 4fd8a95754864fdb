"""
NIBBLEPOW Nonce Utilities
Little-endian nonce counter and random seeding.
"""

import secrets

import config


def increment_nonce(buf: bytearray, start: int = 0, end: int = None) -> None:
    """
    Increment buf[start:end] in place as an unsigned little-endian counter.

    Overflow wraps silently to all zeros.
    """
    if end is None:
        end = len(buf)

    for i in range(start, end):
        if buf[i] == 0xFF:
            buf[i] = 0
        else:
            buf[i] += 1
            return


def random_nonce(length: int = config.NONCE_LENGTH) -> bytes:
    """Random starting nonce from the OS CSPRNG."""
    return secrets.token_bytes(length)
