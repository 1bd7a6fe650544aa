"""Replay of write-ahead log segments, tolerating corrupted tails."""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from lsmdb.wal_record import BLOCK_SIZE_BYTES, HEADER_LEN, RecordType, checksum, parse_segment_id


@dataclass
class WalReplay:
    """Logical records recovered from the log, plus corrupted-tail count."""

    records: list[bytes] = field(default_factory=list)
    dropped_corrupted_tails: int = 0


class _CorruptedTail(Exception):
    pass


class WalReader:
    """Reads every segment in a WAL directory in segment-id order."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        found = []
        for entry in Path(directory).iterdir():
            segment_id = parse_segment_id(entry)
            if segment_id is not None:
                found.append((segment_id, entry))
        found.sort(key=lambda item: item[0])
        self._segments = [path for _, path in found]

    def segments(self) -> list[Path]:
        return list(self._segments)

    def read_all(self) -> list[bytes]:
        return self.replay().records

    def replay(self) -> WalReplay:
        replay = WalReplay()
        for segment_path in self._segments:
            _read_segment(segment_path, replay)
        return replay


def _read_segment(path: Path, replay: WalReplay) -> None:
    data = path.read_bytes()
    if not data:
        return

    assembling: bytearray | None = None
    corrupted = False
    try:
        for record_type, payload in _iter_fragments(data):
            if record_type is RecordType.FULL:
                if assembling is not None:
                    raise _CorruptedTail
                replay.records.append(payload)
            elif record_type is RecordType.FIRST:
                if assembling is not None:
                    raise _CorruptedTail
                assembling = bytearray(payload)
            elif record_type is RecordType.MIDDLE:
                if assembling is None:
                    raise _CorruptedTail
                assembling.extend(payload)
            else:
                if assembling is None:
                    raise _CorruptedTail
                assembling.extend(payload)
                replay.records.append(bytes(assembling))
                assembling = None
    except _CorruptedTail:
        corrupted = True

    if corrupted or assembling is not None:
        replay.dropped_corrupted_tails += 1


def _iter_fragments(data: bytes) -> Iterator[tuple[RecordType, bytes]]:
    """Yield verified physical records; raise _CorruptedTail on bad data."""
    cursor = 0
    block_offset = 0
    size = len(data)

    while cursor < size:
        block_remaining = BLOCK_SIZE_BYTES - block_offset

        if block_remaining < HEADER_LEN:
            cursor += min(block_remaining, size - cursor)
            block_offset = 0
            continue

        if cursor + HEADER_LEN > size:
            raise _CorruptedTail

        header = data[cursor : cursor + HEADER_LEN]
        if not any(header):
            cursor += min(block_remaining, size - cursor)
            block_offset = 0
            continue

        expected_checksum = int.from_bytes(header[0:4], "little")
        payload_len = int.from_bytes(header[4:8], "little")
        total_len = HEADER_LEN + payload_len
        if total_len > block_remaining or cursor + total_len > size:
            raise _CorruptedTail

        try:
            record_type = RecordType(header[8])
        except ValueError:
            raise _CorruptedTail from None

        payload = data[cursor + HEADER_LEN : cursor + total_len]
        if checksum(record_type, payload) != expected_checksum:
            raise _CorruptedTail

        yield record_type, payload

        cursor += total_len
        block_offset += total_len
        if block_offset == BLOCK_SIZE_BYTES:
            block_offset = 0