"""Append-only write-ahead log writer with block framing and segment rotation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from lsmdb.wal_record import (
    BLOCK_SIZE_BYTES,
    DEFAULT_SEGMENT_SIZE_BYTES,
    HEADER_LEN,
    RecordType,
    encode_physical,
    parse_segment_id,
    segment_file_name,
)


class SyncMode(Enum):
    NEVER = "never"
    ON_COMMIT = "on_commit"
    ALWAYS = "always"


@dataclass(frozen=True)
class WalWriterOptions:
    segment_size_bytes: int = DEFAULT_SEGMENT_SIZE_BYTES
    sync_mode: SyncMode = SyncMode.ON_COMMIT


class WalWriteError(ValueError):
    """Raised when the writer is configured with an unusable segment size."""

    def __init__(self, configured: int, minimum: int) -> None:
        super().__init__(
            f"invalid segment size: configured={configured} "
            f"but minimum supported value is {minimum}"
        )
        self.configured = configured
        self.minimum = minimum


class WalWriter:
    """Writes logical records into a new segment, rotating by size."""

    def __init__(
        self, directory: str | os.PathLike[str], options: WalWriterOptions | None = None
    ) -> None:
        options = options or WalWriterOptions()
        minimum = HEADER_LEN + 1
        if options.segment_size_bytes < minimum:
            raise WalWriteError(options.segment_size_bytes, minimum)

        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._options = options
        self._segment_id = _next_segment_id(self._dir)
        self._file, self._segment_path = _open_new_segment(self._dir, self._segment_id)
        self._segment_len = 0
        self._block_offset = 0

    def append(self, payload: bytes) -> None:
        """Append one logical record, rotating first if it would overflow."""
        payload = bytes(payload)
        estimated = _estimate_logical_record_len(len(payload), self._block_offset)
        if self._segment_len > 0 and self._segment_len + estimated > self._options.segment_size_bytes:
            self._rotate_segment()

        self._write_logical_record(payload)

        if self._options.sync_mode is SyncMode.ALWAYS:
            self._sync()

    def append_and_commit(self, payload: bytes) -> None:
        self.append(payload)
        self.commit()

    def commit(self) -> None:
        """Make appended records durable according to the sync mode."""
        if self._options.sync_mode is SyncMode.NEVER:
            self._file.flush()
        else:
            self._sync()

    def current_segment_id(self) -> int:
        return self._segment_id

    def current_segment_path(self) -> Path:
        return self._segment_path

    def sync_data(self) -> None:
        self._sync()

    def close(self) -> None:
        """Flush buffered data and close the current segment."""
        if not self._file.closed:
            self._file.flush()
            self._file.close()

    def __enter__(self) -> WalWriter:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _write_logical_record(self, payload: bytes) -> None:
        if not payload:
            space_left = BLOCK_SIZE_BYTES - self._block_offset
            if space_left < HEADER_LEN:
                self._write_padding(space_left)
            self._write_physical_record(RecordType.FULL, b"")
            return

        view = memoryview(payload)
        is_first = True
        while view:
            available = self._ensure_space_for_fragment()
            fragment = view[:available]
            is_last = len(fragment) == len(view)

            if is_first:
                record_type = RecordType.FULL if is_last else RecordType.FIRST
            else:
                record_type = RecordType.LAST if is_last else RecordType.MIDDLE

            self._write_physical_record(record_type, bytes(fragment))
            view = view[len(fragment) :]
            is_first = False

    def _ensure_space_for_fragment(self) -> int:
        space_left = BLOCK_SIZE_BYTES - self._block_offset
        if space_left <= HEADER_LEN:
            self._write_padding(space_left)
            space_left = BLOCK_SIZE_BYTES
        return space_left - HEADER_LEN

    def _write_physical_record(self, record_type: RecordType, payload: bytes) -> None:
        encoded = encode_physical(record_type, payload)
        self._file.write(encoded)
        self._advance(len(encoded))

    def _write_padding(self, count: int) -> None:
        if count == 0:
            return
        self._file.write(bytes(count))
        self._advance(count)

    def _advance(self, count: int) -> None:
        self._segment_len += count
        self._block_offset += count
        if self._block_offset == BLOCK_SIZE_BYTES:
            self._block_offset = 0

    def _rotate_segment(self) -> None:
        self._file.flush()
        self._file.close()
        self._segment_id += 1
        self._file, self._segment_path = _open_new_segment(self._dir, self._segment_id)
        self._segment_len = 0
        self._block_offset = 0

    def _sync(self) -> None:
        self._file.flush()
        os.fsync(self._file.fileno())


def _estimate_logical_record_len(payload_len: int, block_offset: int) -> int:
    if payload_len == 0:
        space_left = BLOCK_SIZE_BYTES - block_offset
        if space_left < HEADER_LEN:
            return space_left + HEADER_LEN
        return HEADER_LEN

    remaining = payload_len
    written = 0
    while remaining > 0:
        space_left = BLOCK_SIZE_BYTES - block_offset
        if space_left <= HEADER_LEN:
            written += space_left
            block_offset = 0
            continue

        fragment = min(remaining, space_left - HEADER_LEN)
        encoded_len = HEADER_LEN + fragment
        written += encoded_len
        remaining -= fragment

        block_offset += encoded_len
        if block_offset == BLOCK_SIZE_BYTES:
            block_offset = 0

    return written


def _next_segment_id(directory: Path) -> int:
    ids = [
        segment_id
        for segment_id in (parse_segment_id(entry) for entry in directory.iterdir())
        if segment_id is not None
    ]
    return max(ids) + 1 if ids else 0


def _open_new_segment(directory: Path, segment_id: int) -> tuple[BinaryIO, Path]:
    segment_path = directory / segment_file_name(segment_id)
    return open(segment_path, "xb"), segment_path