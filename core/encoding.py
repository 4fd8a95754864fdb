"""
NIBBLEPOW Canonical Encoding
Plutus-datum CBOR encoding of job descriptors.

Job documents use the detailed JSON schema:
    {"constructor": 0, "fields": [{"bytes": "<hex>"}, {"int": 7745}, ...]}

Layout rules (must match the coordinator byte for byte):
- constructor c: tag 121+c (c < 7), tag 1280+c-7 (c < 128), else tag 102 [c, fields]
- non-empty lists are indefinite-length arrays (0x9f ... 0xff), empty lists 0x80
- byte strings over 64 bytes are split into 64-byte chunks (0x5f ... 0xff)
- maps are definite-length

With constructor 0 and a 16-byte first field the blob starts
d8 79 9f 50 <16 bytes>, putting the nonce region at [4, 20).
"""

import io
import json
from typing import Any, Dict, List

import cbor2

import config
from .errors import MalformedJobError

# CBOR major types
MAJOR_ARRAY = 4
MAJOR_MAP = 5
MAJOR_TAG = 6

INDEFINITE_ARRAY = b'\x9f'
INDEFINITE_BYTES = b'\x5f'
BREAK = b'\xff'

BYTES_CHUNK_SIZE = 64

NONCE_OFFSET = config.NONCE_OFFSET
NONCE_LENGTH = config.NONCE_LENGTH


class DatumEncoder:
    """
    Writes detailed-schema datums to a cbor2 encoder.

    Leaf values and length heads go through cbor2; only the indefinite-length
    markers are written directly.
    """

    def __init__(self, fp):
        self.encoder = cbor2.CBOREncoder(fp)

    def write_bytes(self, data: bytes):
        """Bounded byte string, chunked when over 64 bytes."""
        if len(data) <= BYTES_CHUNK_SIZE:
            self.encoder.encode(bytes(data))
            return

        self.encoder.write(INDEFINITE_BYTES)
        for i in range(0, len(data), BYTES_CHUNK_SIZE):
            self.encoder.encode(bytes(data[i:i + BYTES_CHUNK_SIZE]))
        self.encoder.write(BREAK)

    def write_list(self, items: List[Any]):
        if not items:
            self.encoder.encode_length(MAJOR_ARRAY, 0)
            return

        self.encoder.write(INDEFINITE_ARRAY)
        for item in items:
            self.write_datum(item)
        self.encoder.write(BREAK)

    def write_constructor(self, constructor: int, fields: List[Any]):
        if constructor < 0:
            raise MalformedJobError(f"Negative constructor index: {constructor}")

        if constructor < 7:
            self.encoder.encode_length(MAJOR_TAG, 121 + constructor)
        elif constructor < 128:
            self.encoder.encode_length(MAJOR_TAG, 1280 + constructor - 7)
        else:
            # General form: 102([constructor, fields])
            self.encoder.encode_length(MAJOR_TAG, 102)
            self.encoder.encode_length(MAJOR_ARRAY, 2)
            self.encoder.encode(constructor)
        self.write_list(fields)

    def write_map(self, entries: List[Dict[str, Any]]):
        """Map given as [{"k": ..., "v": ...}, ...]."""
        for entry in entries:
            if not isinstance(entry, dict) or set(entry) != {'k', 'v'}:
                raise MalformedJobError(f"Invalid map entry: {entry!r}")

        self.encoder.encode_length(MAJOR_MAP, len(entries))
        for entry in entries:
            self.write_datum(entry['k'])
            self.write_datum(entry['v'])

    def write_datum(self, obj: Any):
        """
        Encode one detailed-schema datum object.

        Args:
            obj: Parsed JSON object (constructor, bytes, int, list or map)
        """
        if not isinstance(obj, dict):
            raise MalformedJobError(f"Datum must be an object, got {type(obj).__name__}")

        if 'constructor' in obj:
            constructor = obj.get('constructor')
            fields = obj.get('fields')
            if set(obj) != {'constructor', 'fields'}:
                raise MalformedJobError(f"Unexpected constructor keys: {sorted(obj)}")
            if not isinstance(constructor, int) or isinstance(constructor, bool):
                raise MalformedJobError(f"Constructor index must be an integer: {constructor!r}")
            if not isinstance(fields, list):
                raise MalformedJobError("Constructor fields must be a list")
            self.write_constructor(constructor, fields)
            return

        if len(obj) != 1:
            raise MalformedJobError(f"Datum must have exactly one key: {sorted(obj)}")

        key, value = next(iter(obj.items()))

        if key == 'bytes':
            if not isinstance(value, str):
                raise MalformedJobError(f"bytes value must be a hex string: {value!r}")
            try:
                data = bytes.fromhex(value)
            except ValueError as e:
                raise MalformedJobError(f"Invalid hex in bytes field: {e}") from e
            self.write_bytes(data)
        elif key == 'int':
            if not isinstance(value, int) or isinstance(value, bool):
                raise MalformedJobError(f"int value must be an integer: {value!r}")
            self.encoder.encode(value)
        elif key == 'list':
            if not isinstance(value, list):
                raise MalformedJobError("list value must be a list")
            self.write_list(value)
        elif key == 'map':
            if not isinstance(value, list):
                raise MalformedJobError("map value must be a list of k/v entries")
            self.write_map(value)
        else:
            raise MalformedJobError(f"Unknown datum key: {key!r}")


def encode_datum(obj: Any) -> bytes:
    """Encode one detailed-schema datum object to CBOR bytes."""
    with io.BytesIO() as fp:
        try:
            DatumEncoder(fp).write_datum(obj)
        except RecursionError as e:
            raise MalformedJobError("Datum is nested too deeply") from e
        return fp.getvalue()


def encode_job_fields(text: str) -> bytes:
    """
    Parse a job document and encode it.

    Args:
        text: Raw job JSON

    Returns:
        Encoded blob with the nonce region at [NONCE_OFFSET, NONCE_OFFSET + NONCE_LENGTH)
    """
    try:
        doc = json.loads(text)
    except (TypeError, ValueError, RecursionError) as e:
        raise MalformedJobError(f"Job is not valid JSON: {e}") from e

    if not isinstance(doc, dict) or 'constructor' not in doc:
        raise MalformedJobError("Job must be a constructor object")

    return encode_datum(doc)
