"""
NIBBLEPOW Core Module
Contains hashing, difficulty scoring, nonce handling and job encoding.
"""

from .crypto import sha256, sha256d
from .difficulty import DifficultyTarget, get_difficulty, beats_target
from .nonce import increment_nonce, random_nonce
from .job import JobDescriptor, EncodedJob, FieldValue, extract_fields, encode_job
from .errors import (
    MinerError,
    TransientNetworkError,
    MalformedJobError,
    InvariantViolation,
)

__all__ = [
    'sha256',
    'sha256d',
    'DifficultyTarget',
    'get_difficulty',
    'beats_target',
    'increment_nonce',
    'random_nonce',
    'JobDescriptor',
    'EncodedJob',
    'FieldValue',
    'extract_fields',
    'encode_job',
    'MinerError',
    'TransientNetworkError',
    'MalformedJobError',
    'InvariantViolation',
]
