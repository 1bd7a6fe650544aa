"""Append-only byte arena used to back memtable storage."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_ARENA_BLOCK_SIZE_BYTES = 4 * 1024


@dataclass(frozen=True)
class ArenaSlice:
    """A handle to a run of bytes stored inside an :class:`Arena`."""

    block_index: int
    offset: int
    length: int

    def __len__(self) -> int:
        return self.length


@dataclass
class _Block:
    capacity: int
    data: bytearray = field(default_factory=bytearray)

    @property
    def remaining(self) -> int:
        return self.capacity - len(self.data)


class Arena:
    """Stores byte strings in fixed-capacity blocks and hands out slices."""

    def __init__(self, block_size: int = DEFAULT_ARENA_BLOCK_SIZE_BYTES) -> None:
        self._block_size = max(block_size, 1)
        self._blocks: list[_Block] = []
        self._allocated_bytes = 0

    @property
    def block_size(self) -> int:
        return self._block_size

    def allocate(self, data: bytes) -> ArenaSlice:
        """Copy ``data`` into the arena and return a slice referring to it."""
        length = len(data)
        self._ensure_capacity(length)

        block_index = len(self._blocks) - 1
        block = self._blocks[block_index]
        offset = len(block.data)
        block.data.extend(data)
        self._allocated_bytes += length

        return ArenaSlice(block_index, offset, length)

    def get(self, slice_: ArenaSlice) -> bytes:
        """Return the bytes referred to by ``slice_``."""
        if slice_.length == 0:
            return b""
        block = self._blocks[slice_.block_index]
        return bytes(block.data[slice_.offset : slice_.offset + slice_.length])

    def allocated_bytes(self) -> int:
        """Total number of payload bytes stored."""
        return self._allocated_bytes

    def reserved_bytes(self) -> int:
        """Total capacity reserved across all blocks."""
        return sum(block.capacity for block in self._blocks)

    def _ensure_capacity(self, length: int) -> None:
        if not self._blocks or self._blocks[-1].remaining < length:
            self._blocks.append(_Block(capacity=max(self._block_size, length)))