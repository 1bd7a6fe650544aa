"""Prefix-compressed sorted data blocks with restart points."""

from __future__ import annotations

import struct
from bisect import bisect_left
from collections.abc import Iterator
from dataclasses import dataclass

DEFAULT_RESTART_INTERVAL = 16

_ENTRY_HEADER = struct.Struct("<III")
_U32 = struct.Struct("<I")
_U32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class FinishedBlock:
    """Encoded block bytes together with its last key and entry count."""

    data: bytes
    last_key: bytes
    entry_count: int


class BlockBuildError(ValueError):
    """Raised when a data block cannot be built."""


class BlockDecodeError(ValueError):
    """Raised when encoded block bytes are malformed."""


def _checked_u32(value: int) -> int:
    if value > _U32_MAX:
        raise BlockBuildError("block grew beyond u32 offset limits")
    return value


def _shared_prefix_len(previous: bytes, current: bytes) -> int:
    length = 0
    for left, right in zip(previous, current):
        if left != right:
            break
        length += 1
    return length


class DataBlockBuilder:
    """Accumulates strictly increasing key/value pairs into one block."""

    def __init__(self, restart_interval: int = DEFAULT_RESTART_INTERVAL) -> None:
        if restart_interval <= 0:
            raise BlockBuildError(f"invalid restart interval: {restart_interval}")
        self._restart_interval = restart_interval
        self._buffer = bytearray()
        self._restarts: list[int] = [0]
        self._last_key = b""
        self._entries_since_restart = 0
        self._entry_count = 0

    def add(self, key: bytes, value: bytes) -> None:
        """Append an entry; keys must be strictly greater than the previous one."""
        key = bytes(key)
        value = bytes(value)
        if self._entry_count > 0 and key <= self._last_key:
            raise BlockBuildError("keys must be strictly increasing inside a data block")

        shared = 0
        if self._entries_since_restart >= self._restart_interval:
            self._restarts.append(_checked_u32(len(self._buffer)))
            self._entries_since_restart = 0
        else:
            shared = _shared_prefix_len(self._last_key, key)

        non_shared = len(key) - shared
        self._buffer += _ENTRY_HEADER.pack(
            _checked_u32(shared), _checked_u32(non_shared), _checked_u32(len(value))
        )
        self._buffer += key[shared:]
        self._buffer += value

        self._last_key = key
        self._entries_since_restart += 1
        self._entry_count += 1

    def estimated_size_bytes(self) -> int:
        """Size the block would have if finished now."""
        return len(self._buffer) + 4 * len(self._restarts) + 4

    def is_empty(self) -> bool:
        return self._entry_count == 0

    def finish(self) -> FinishedBlock:
        """Append the restart section and return the encoded block."""
        if self._entry_count == 0:
            raise BlockBuildError("cannot finish an empty data block")
        trailer = b"".join(_U32.pack(offset) for offset in self._restarts)
        trailer += _U32.pack(_checked_u32(len(self._restarts)))
        return FinishedBlock(
            data=bytes(self._buffer) + trailer,
            last_key=self._last_key,
            entry_count=self._entry_count,
        )


def _read_u32(raw: bytes, offset: int) -> int:
    if offset + 4 > len(raw):
        raise BlockDecodeError(f"entry is truncated at offset {offset}")
    return _U32.unpack_from(raw, offset)[0]


def _decode_entry(
    raw: bytes, data_section_end: int, offset: int, previous_key: bytes
) -> tuple[int, bytes, bytes]:
    if offset + _ENTRY_HEADER.size > data_section_end:
        raise BlockDecodeError(f"entry is truncated at offset {offset}")

    shared, non_shared, value_len = _ENTRY_HEADER.unpack_from(raw, offset)
    if shared > len(previous_key):
        raise BlockDecodeError(f"entry shared prefix is invalid at offset {offset}")

    payload_offset = offset + _ENTRY_HEADER.size
    key_end = payload_offset + non_shared
    value_end = key_end + value_len
    if value_end > data_section_end:
        raise BlockDecodeError(f"entry payload length is invalid at offset {offset}")

    key = previous_key[:shared] + raw[payload_offset:key_end]
    return value_end, key, raw[key_end:value_end]


class DataBlock:
    """A decoded, validated data block supporting point lookups and iteration."""

    def __init__(self, raw: bytes) -> None:
        raw = bytes(raw)
        if len(raw) < 4:
            raise BlockDecodeError("block is too small to contain restart metadata")

        restart_count = _read_u32(raw, len(raw) - 4)
        if restart_count == 0:
            raise BlockDecodeError("invalid restart count: 0")

        restart_bytes = restart_count * 4
        if len(raw) < 4 + restart_bytes:
            raise BlockDecodeError("restart metadata is truncated")

        section = len(raw) - 4 - restart_bytes
        restart_offsets = []
        for position in range(section, section + restart_bytes, 4):
            offset = _read_u32(raw, position)
            if offset >= section:
                raise BlockDecodeError(f"restart offset {offset} is out of bounds")
            restart_offsets.append(offset)

        if restart_offsets[0] != 0:
            raise BlockDecodeError("restart offsets must start at 0")

        restart_keys = [
            _decode_entry(raw, section, offset, b"")[1] for offset in restart_offsets
        ]

        entry_count = 0
        cursor = 0
        previous_key = b""
        while cursor < section:
            cursor, previous_key, _ = _decode_entry(raw, section, cursor, previous_key)
            entry_count += 1

        if cursor != section:
            raise BlockDecodeError(f"entry payload length is invalid at offset {cursor}")

        self._raw = raw
        self._restart_offsets = restart_offsets
        self._restart_keys = restart_keys
        self._section = section
        self._entry_count = entry_count

    def get(self, key: bytes) -> bytes | None:
        """Return the value stored for ``key``, or None."""
        if self._entry_count == 0:
            return None
        key = bytes(key)

        index = bisect_left(self._restart_keys, key)
        if not (index < len(self._restart_keys) and self._restart_keys[index] == key):
            index = max(index - 1, 0)

        cursor = self._restart_offsets[index]
        previous_key = b""
        while cursor < self._section:
            try:
                next_cursor, decoded_key, value = _decode_entry(
                    self._raw, self._section, cursor, previous_key
                )
            except BlockDecodeError:
                return None
            if decoded_key < key:
                previous_key = decoded_key
                cursor = next_cursor
            elif decoded_key == key:
                return value
            else:
                return None
        return None

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        cursor = 0
        previous_key = b""
        while cursor < self._section:
            try:
                cursor, previous_key, value = _decode_entry(
                    self._raw, self._section, cursor, previous_key
                )
            except BlockDecodeError:
                return
            yield previous_key, value

    def entries(self) -> list[tuple[bytes, bytes]]:
        return list(self)

    def entry_count(self) -> int:
        return self._entry_count

    def is_empty(self) -> bool:
        return self._entry_count == 0