"""
NIBBLEPOW Cryptographic Utilities
SHA-256 and double SHA-256 over job blobs.
"""

import hashlib


# ============================================================================
# HASHING FUNCTIONS
# ============================================================================

def sha256(data: bytes) -> bytes:
    """Single SHA-256 hash."""
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    """
    Double SHA-256 hash.
    Used to score every candidate nonce.
    """
    return sha256(sha256(data))
