"""Ordered key/value skip list backed by an arena."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass

from lsmdb.arena import DEFAULT_ARENA_BLOCK_SIZE_BYTES, Arena, ArenaSlice

MAX_LEVEL = 12

_MASK64 = (1 << 64) - 1
_FALLBACK_SEED = 0x9E3779B97F4A7C15
_HEAD = 0


@dataclass
class _Node:
    key: ArenaSlice
    value: ArenaSlice
    next: list[int | None]


def _initial_seed() -> int:
    return ((time.time_ns() & _MASK64) ^ ((os.getpid() << 16) & _MASK64)) | 1


class SkipList:
    """Thread-safe sorted map from byte keys to byte values."""

    def __init__(self, arena_block_size: int = DEFAULT_ARENA_BLOCK_SIZE_BYTES) -> None:
        self._lock = threading.Lock()
        self._arena = Arena(arena_block_size)
        empty = self._arena.allocate(b"")
        self._nodes: list[_Node] = [_Node(empty, empty, [None] * MAX_LEVEL)]
        self._len = 0
        self._level = 1
        self._seed = _initial_seed()

    def insert(self, key: bytes, value: bytes) -> bytes | None:
        """Insert or replace ``key``; return the previous value if any."""
        key = bytes(key)
        value = bytes(value)
        with self._lock:
            updates = [_HEAD] * MAX_LEVEL
            candidate = self._find_greater_or_equal(key, updates)

            if candidate is not None:
                existing = self._nodes[candidate]
                if self._arena.get(existing.key) == key:
                    previous = self._arena.get(existing.value)
                    existing.value = self._arena.allocate(value)
                    return previous

            node_level = self._random_level()
            # Levels above the current height start from the head, which
            # ``updates`` already points at.
            self._level = max(self._level, node_level)

            key_slice = self._arena.allocate(key)
            value_slice = self._arena.allocate(value)
            successors = [
                self._nodes[prev].next[level] for level, prev in enumerate(updates[:node_level])
            ]
            new_index = len(self._nodes)
            self._nodes.append(_Node(key_slice, value_slice, successors))

            for level, prev in enumerate(updates[:node_level]):
                self._nodes[prev].next[level] = new_index

            self._len += 1
            return None

    def get(self, key: bytes) -> bytes | None:
        """Return the value stored for ``key``, or None."""
        key = bytes(key)
        with self._lock:
            candidate = self._find_greater_or_equal(key, None)
            if candidate is None:
                return None
            node = self._nodes[candidate]
            if self._arena.get(node.key) == key:
                return self._arena.get(node.value)
            return None

    def items(self) -> list[tuple[bytes, bytes]]:
        """Return all entries in ascending key order."""
        with self._lock:
            entries = []
            cursor = self._nodes[_HEAD].next[0]
            while cursor is not None:
                node = self._nodes[cursor]
                entries.append((self._arena.get(node.key), self._arena.get(node.value)))
                cursor = node.next[0]
            return entries

    def __len__(self) -> int:
        with self._lock:
            return self._len

    def allocated_bytes(self) -> int:
        with self._lock:
            return self._arena.allocated_bytes()

    def _find_greater_or_equal(self, key: bytes, updates: list[int] | None) -> int | None:
        current = _HEAD
        for level in reversed(range(self._level)):
            while True:
                next_index = self._nodes[current].next[level]
                if next_index is None:
                    break
                if self._arena.get(self._nodes[next_index].key) < key:
                    current = next_index
                else:
                    break
            if updates is not None:
                updates[level] = current
        return self._nodes[current].next[0]

    def _random_level(self) -> int:
        level = 1
        while level < MAX_LEVEL and (self._next_random() & 0b11) == 0:
            level += 1
        return level

    def _next_random(self) -> int:
        value = self._seed
        value ^= (value << 13) & _MASK64
        value ^= value >> 7
        value ^= (value << 17) & _MASK64
        if value == 0:
            value = _FALLBACK_SEED
        self._seed = value
        return value