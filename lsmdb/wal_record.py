"""Physical record framing and segment naming for the write-ahead log."""

from __future__ import annotations

import os
import zlib
from dataclasses import dataclass
from enum import IntEnum
from pathlib import PurePath

HEADER_LEN = 9
BLOCK_SIZE_BYTES = 32 * 1024
DEFAULT_SEGMENT_SIZE_BYTES = 64 * 1024 * 1024

SEGMENT_FILE_PREFIX = "wal-"
SEGMENT_FILE_SUFFIX = ".log"

_U32_MAX = 0xFFFFFFFF
_U64_MAX = (1 << 64) - 1


class RecordType(IntEnum):
    """How a physical record relates to the logical record it carries."""

    FULL = 1
    FIRST = 2
    MIDDLE = 3
    LAST = 4


@dataclass(frozen=True)
class PhysicalRecord:
    record_type: RecordType
    payload: bytes


class RecordEncodeError(ValueError):
    """Raised when a payload cannot be framed."""

    def __init__(self, length: int) -> None:
        super().__init__(f"record payload length {length} exceeds u32::MAX")
        self.length = length


class RecordDecodeError(ValueError):
    """Raised when a buffer does not hold a valid physical record."""


class ChecksumMismatchError(RecordDecodeError):
    """Raised when a record's stored checksum does not match its contents."""

    def __init__(self, expected: int, found: int) -> None:
        super().__init__(
            f"WAL record checksum mismatch: expected {expected}, found {found}"
        )
        self.expected = expected
        self.found = found


def checksum(record_type: RecordType, payload: bytes) -> int:
    """CRC32 over the record type byte followed by the payload."""
    return zlib.crc32(payload, zlib.crc32(bytes([int(record_type)])))


def encode_physical(record_type: RecordType, payload: bytes) -> bytes:
    """Frame ``payload`` as checksum, length, type and payload."""
    payload = bytes(payload)
    if len(payload) > _U32_MAX:
        raise RecordEncodeError(len(payload))
    return (
        checksum(record_type, payload).to_bytes(4, "little")
        + len(payload).to_bytes(4, "little")
        + bytes([int(record_type)])
        + payload
    )


def decode_physical(buf: bytes) -> PhysicalRecord:
    """Decode one physical record from the start of ``buf``."""
    if len(buf) < HEADER_LEN:
        raise RecordDecodeError(f"record buffer too small for header: {len(buf)} bytes")

    expected_checksum = int.from_bytes(buf[0:4], "little")
    payload_len = int.from_bytes(buf[4:8], "little")
    try:
        record_type = RecordType(buf[8])
    except ValueError:
        raise RecordDecodeError(f"invalid WAL record type byte: {buf[8]}") from None

    required = HEADER_LEN + payload_len
    if len(buf) < required:
        raise RecordDecodeError(
            f"record payload is truncated: expected {payload_len} bytes, "
            f"found {len(buf) - HEADER_LEN}"
        )

    payload = bytes(buf[HEADER_LEN:required])
    found_checksum = checksum(record_type, payload)
    if found_checksum != expected_checksum:
        raise ChecksumMismatchError(expected_checksum, found_checksum)

    return PhysicalRecord(record_type, payload)


def segment_file_name(segment_id: int) -> str:
    """File name of the segment with the given id."""
    return f"{SEGMENT_FILE_PREFIX}{segment_id:020d}{SEGMENT_FILE_SUFFIX}"


def parse_segment_id(path: str | os.PathLike[str]) -> int | None:
    """Extract the segment id from a segment path, or None if it is not one."""
    name = PurePath(path).name
    if not name.startswith(SEGMENT_FILE_PREFIX) or not name.endswith(SEGMENT_FILE_SUFFIX):
        return None
    if len(name) < len(SEGMENT_FILE_PREFIX) + len(SEGMENT_FILE_SUFFIX):
        return None

    body = name[len(SEGMENT_FILE_PREFIX) : len(name) - len(SEGMENT_FILE_SUFFIX)]
    if body.startswith("+"):
        body = body[1:]
    if not body or not all("0" <= char <= "9" for char in body):
        return None

    value = int(body)
    return value if value <= _U64_MAX else None