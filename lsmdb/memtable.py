"""In-memory write buffer keyed by internal (user key, sequence, type) keys."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

from lsmdb.arena import DEFAULT_ARENA_BLOCK_SIZE_BYTES
from lsmdb.skiplist import SkipList

DEFAULT_MEMTABLE_SIZE_BYTES = 64 * 1024 * 1024

_INTERNAL_KEY_SUFFIX_LEN = 9


class ValueType(IntEnum):
    DELETE = 0
    PUT = 1


@dataclass(frozen=True)
class DecodedInternalKey:
    user_key: bytes
    sequence: int
    value_type: ValueType


def encode_internal_key(user_key: bytes, sequence: int, value_type: ValueType) -> bytes:
    """Append the big-endian sequence number and value type to ``user_key``."""
    return bytes(user_key) + sequence.to_bytes(8, "big") + bytes([int(value_type)])


def decode_internal_key(key: bytes) -> DecodedInternalKey | None:
    """Split an internal key into its parts; None if it is malformed."""
    if len(key) < _INTERNAL_KEY_SUFFIX_LEN:
        return None
    try:
        value_type = ValueType(key[-1])
    except ValueError:
        return None
    user_key_end = len(key) - _INTERNAL_KEY_SUFFIX_LEN
    return DecodedInternalKey(
        user_key=bytes(key[:user_key_end]),
        sequence=int.from_bytes(key[user_key_end : user_key_end + 8], "big"),
        value_type=value_type,
    )


@dataclass(frozen=True)
class MemTableEntry:
    internal_key: bytes
    value: bytes


class MemTable:
    """A sorted, thread-safe table of internal keys with size accounting."""

    def __init__(self, arena_block_size_bytes: int = DEFAULT_ARENA_BLOCK_SIZE_BYTES) -> None:
        self._data = SkipList(arena_block_size_bytes)
        self._size_lock = threading.Lock()
        self._approximate_size_bytes = 0

    def put(self, user_key: bytes, sequence: int, value: bytes) -> bytes | None:
        internal_key = encode_internal_key(user_key, sequence, ValueType.PUT)
        return self.insert_internal(internal_key, value)

    def delete(self, user_key: bytes, sequence: int) -> bytes | None:
        internal_key = encode_internal_key(user_key, sequence, ValueType.DELETE)
        return self.insert_internal(internal_key, b"")

    def insert_internal(self, internal_key: bytes, value: bytes) -> bytes | None:
        """Store ``value`` under ``internal_key``; return the value it replaced."""
        previous = self._data.insert(internal_key, value)
        with self._size_lock:
            if previous is None:
                self._approximate_size_bytes += len(internal_key) + len(value)
            else:
                delta = len(value) - len(previous)
                self._approximate_size_bytes = max(self._approximate_size_bytes + delta, 0)
        return previous

    def get_internal(self, internal_key: bytes) -> bytes | None:
        return self._data.get(internal_key)

    def ordered_entries(self) -> list[MemTableEntry]:
        return [MemTableEntry(key, value) for key, value in self._data.items()]

    def __iter__(self) -> Iterator[MemTableEntry]:
        return iter(self.ordered_entries())

    def __len__(self) -> int:
        return len(self._data)

    def approximate_size_bytes(self) -> int:
        with self._size_lock:
            return self._approximate_size_bytes


class MemTableManager:
    """Holds one mutable memtable and the immutable ones awaiting flush."""

    def __init__(
        self,
        max_memtable_size_bytes: int = DEFAULT_MEMTABLE_SIZE_BYTES,
        arena_block_size_bytes: int = DEFAULT_ARENA_BLOCK_SIZE_BYTES,
    ) -> None:
        self._max_memtable_size_bytes = max(max_memtable_size_bytes, 1)
        self._arena_block_size_bytes = arena_block_size_bytes
        self._mutable = MemTable(arena_block_size_bytes)
        self._immutables: list[MemTable] = []

    def mutable(self) -> MemTable:
        return self._mutable

    def immutables(self) -> list[MemTable]:
        """Immutable tables, oldest first."""
        return list(self._immutables)

    def immutable_count(self) -> int:
        return len(self._immutables)

    def put(self, user_key: bytes, sequence: int, value: bytes) -> bool:
        """Write to the mutable table; return True if it was promoted."""
        self._mutable.put(user_key, sequence, value)
        return self.promote_if_needed()

    def delete(self, user_key: bytes, sequence: int) -> bool:
        self._mutable.delete(user_key, sequence)
        return self.promote_if_needed()

    def insert_internal(self, internal_key: bytes, value: bytes) -> bool:
        self._mutable.insert_internal(internal_key, value)
        return self.promote_if_needed()

    def promote_if_needed(self) -> bool:
        if self._mutable.approximate_size_bytes() < self._max_memtable_size_bytes:
            return False
        self.promote_mutable()
        return True

    def promote_mutable(self) -> None:
        """Freeze the mutable table and start a fresh one."""
        self._immutables.append(self._mutable)
        self._mutable = MemTable(self._arena_block_size_bytes)

    def take_immutables(self) -> list[MemTable]:
        taken, self._immutables = self._immutables, []
        return taken

    def remove_immutable(self, target: MemTable) -> bool:
        """Remove ``target`` by identity; return whether it was present."""
        for index, candidate in enumerate(self._immutables):
            if candidate is target:
                del self._immutables[index]
                return True
        return False