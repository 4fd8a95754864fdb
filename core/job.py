"""
NIBBLEPOW Jobs
Job descriptors from the coordinator and their encoded search form.
"""

import json
from dataclasses import dataclass
from typing import List, Optional, Any

import config
from .difficulty import DifficultyTarget
from .encoding import encode_job_fields, NONCE_OFFSET, NONCE_LENGTH
from .errors import MalformedJobError

# Encoded header of a 16-byte string: major type 2, length 16
NONCE_FIELD_HEAD = 0x50


@dataclass(frozen=True)
class FieldValue:
    """One typed entry of a job's field list."""
    kind: str  # 'bytes' or 'int'
    value: Any

    @property
    def is_int(self) -> bool:
        return self.kind == 'int'

    @property
    def is_bytes(self) -> bool:
        return self.kind == 'bytes'


def extract_fields(text: str) -> List[FieldValue]:
    """
    Extract the typed field list of a job document.

    Args:
        text: Raw job JSON

    Returns:
        List of FieldValue in document order
    """
    try:
        doc = json.loads(text)
    except (TypeError, ValueError, RecursionError) as e:
        raise MalformedJobError(f"Job is not valid JSON: {e}") from e

    raw_fields = doc.get('fields') if isinstance(doc, dict) else None
    if not isinstance(raw_fields, list):
        raise MalformedJobError("Job has no field list")

    fields = []
    for index, entry in enumerate(raw_fields):
        if not isinstance(entry, dict) or len(entry) != 1:
            raise MalformedJobError(f"Field {index} must be a single-key object")

        kind, value = next(iter(entry.items()))
        if kind == 'bytes' and isinstance(value, str):
            try:
                fields.append(FieldValue('bytes', bytes.fromhex(value)))
            except ValueError as e:
                raise MalformedJobError(f"Field {index} has invalid hex: {e}") from e
        elif kind == 'int' and isinstance(value, int) and not isinstance(value, bool):
            fields.append(FieldValue('int', value))
        else:
            raise MalformedJobError(f"Field {index} has unsupported type {kind!r}")

    return fields


def difficulty_target(fields: List[FieldValue]) -> DifficultyTarget:
    """Read the required zeroes and difficulty from their fixed field positions."""
    values = []
    for index in (config.FIELD_REQUIRED_ZEROES, config.FIELD_REQUIRED_DIFFICULTY):
        if index >= len(fields):
            raise MalformedJobError(f"Job has {len(fields)} fields, expected at least {index + 1}")
        entry = fields[index]
        if not entry.is_int:
            raise MalformedJobError(f"Field {index} must be an int, got {entry.kind}")
        if entry.value < 0:
            raise MalformedJobError(f"Field {index} must be unsigned, got {entry.value}")
        values.append(entry.value)

    return DifficultyTarget(zeroes=values[0], difficulty=values[1])


@dataclass
class JobDescriptor:
    """Raw job text as served by the coordinator."""
    raw: str

    def same_as(self, text: Optional[str]) -> bool:
        """Byte-for-byte equality with freshly polled text."""
        return text is not None and self.raw == text

    @property
    def fields(self) -> List[FieldValue]:
        return extract_fields(self.raw)

    @property
    def content_id(self) -> str:
        """Hex of the first bytes field, for log lines."""
        try:
            for entry in self.fields:
                if entry.is_bytes:
                    return entry.value.hex()
        except MalformedJobError:
            pass
        return "unknown"


@dataclass(frozen=True)
class EncodedJob:
    """Encoded job blob plus the target workers search against."""
    blob: bytes
    target: DifficultyTarget
    descriptor: JobDescriptor

    @property
    def nonce_slice(self) -> slice:
        return slice(NONCE_OFFSET, NONCE_OFFSET + NONCE_LENGTH)

    @property
    def nonce(self) -> bytes:
        """Nonce region as served (normally the placeholder)."""
        return self.blob[self.nonce_slice]


def encode_job(descriptor: JobDescriptor) -> EncodedJob:
    """
    Encode a job descriptor for searching.

    The first field must be a 16-byte string so that its payload is the
    nonce region at [4, 20).
    """
    fields = descriptor.fields
    target = difficulty_target(fields)

    if not fields[0].is_bytes or len(fields[0].value) != NONCE_LENGTH:
        raise MalformedJobError(f"Field 0 must be a {NONCE_LENGTH}-byte string to hold the nonce")

    blob = encode_job_fields(descriptor.raw)

    if len(blob) < NONCE_OFFSET + NONCE_LENGTH or blob[NONCE_OFFSET - 1] != NONCE_FIELD_HEAD:
        raise MalformedJobError("Encoded job does not place the nonce at the expected offset")

    return EncodedJob(blob=blob, target=target, descriptor=descriptor)
