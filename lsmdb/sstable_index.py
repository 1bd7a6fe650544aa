"""Index block mapping each data block's last key to its location in a table file."""

from __future__ import annotations

import struct
from bisect import bisect_left
from collections.abc import Iterable
from dataclasses import dataclass

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_U64_MAX = (1 << 64) - 1


@dataclass(frozen=True)
class BlockHandle:
    """Offset and size of a block inside a table file."""

    offset: int
    size: int

    def end_offset(self) -> int:
        """Offset just past the block, saturating at the u64 limit."""
        return min(self.offset + self.size, _U64_MAX)


@dataclass(frozen=True)
class IndexEntry:
    """The last key stored in a data block, and where that block lives."""

    last_key: bytes
    handle: BlockHandle


class IndexBuildError(ValueError):
    """Raised when index entries are not in strictly ascending key order."""


class IndexDecodeError(ValueError):
    """Raised when encoded index bytes are malformed."""


def _is_strictly_sorted(entries: list[IndexEntry]) -> bool:
    return all(left.last_key < right.last_key for left, right in zip(entries, entries[1:]))


def _read(fmt: struct.Struct, data: bytes, cursor: int) -> tuple[int, int]:
    end = cursor + fmt.size
    if end > len(data):
        raise IndexDecodeError("index block is truncated")
    return fmt.unpack_from(data, cursor)[0], end


class IndexBlock:
    """Sorted list of index entries supporting lookup of the block for a key."""

    def __init__(self, entries: Iterable[IndexEntry] = ()) -> None:
        entries = list(entries)
        if not _is_strictly_sorted(entries):
            raise IndexBuildError("index keys must be sorted in ascending order")
        self._entries = entries
        self._keys = [entry.last_key for entry in entries]

    def encode(self) -> bytes:
        parts = [_U32.pack(len(self._entries))]
        for entry in self._entries:
            parts.append(_U32.pack(len(entry.last_key)))
            parts.append(entry.last_key)
            parts.append(_U64.pack(entry.handle.offset))
            parts.append(_U64.pack(entry.handle.size))
        return b"".join(parts)

    @classmethod
    def decode(cls, data: bytes) -> IndexBlock:
        data = bytes(data)
        entry_count, cursor = _read(_U32, data, 0)

        entries = []
        for _ in range(entry_count):
            key_len, cursor = _read(_U32, data, cursor)
            key_end = cursor + key_len
            if key_end > len(data):
                raise IndexDecodeError("index block key length is invalid")
            key = data[cursor:key_end]
            cursor = key_end

            offset, cursor = _read(_U64, data, cursor)
            size, cursor = _read(_U64, data, cursor)
            entries.append(IndexEntry(key, BlockHandle(offset, size)))

        if cursor != len(data):
            raise IndexDecodeError("index block is truncated")
        if not _is_strictly_sorted(entries):
            raise IndexDecodeError("index block entries are not sorted")

        return cls(entries)

    def find_block_for_key(self, key: bytes) -> IndexEntry | None:
        """The entry of the first block whose last key is >= ``key``."""
        index = self.find_block_index_for_key(key)
        return None if index is None else self._entries[index]

    def find_block_index_for_key(self, key: bytes) -> int | None:
        """Position of the first block whose last key is >= ``key``, or None."""
        index = bisect_left(self._keys, bytes(key))
        return index if index < len(self._entries) else None

    def entries(self) -> list[IndexEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)