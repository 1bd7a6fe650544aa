"""Writer for sorted string table files: data blocks, bloom filter, index and footer."""

from __future__ import annotations

import os
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path

from lsmdb.block import DEFAULT_RESTART_INTERVAL, BlockBuildError, DataBlockBuilder
from lsmdb.bloom import DEFAULT_BITS_PER_KEY, DEFAULT_HASH_FUNCTIONS, BloomFilterBuilder
from lsmdb.sstable_index import BlockHandle, IndexBlock, IndexBuildError, IndexEntry

DEFAULT_DATA_BLOCK_SIZE_BYTES = 4 * 1024
SSTABLE_FOOTER_SIZE_BYTES = 48
SSTABLE_MAGIC = 0xDB4775248B80FB57
SSTABLE_FOOTER_CHECKSUM_OFFSET_BYTES = 32
SSTABLE_FOOTER_CHECKSUM_SIZE_BYTES = 8
FILTER_META_KEY = "filter.bloom"

_FOOTER = struct.Struct("<6Q")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


@dataclass(frozen=True)
class Footer:
    metaindex_handle: BlockHandle
    index_handle: BlockHandle
    checksum: int


class FooterDecodeError(ValueError):
    """Raised when footer bytes have the wrong size or magic number."""


def encode_footer(metaindex_handle: BlockHandle, index_handle: BlockHandle, checksum: int) -> bytes:
    """Encode the fixed 48-byte table footer."""
    return _FOOTER.pack(
        metaindex_handle.offset,
        metaindex_handle.size,
        index_handle.offset,
        index_handle.size,
        checksum,
        SSTABLE_MAGIC,
    )


def decode_footer(data: bytes) -> Footer:
    """Decode a 48-byte table footer, checking its magic number."""
    if len(data) != SSTABLE_FOOTER_SIZE_BYTES:
        raise FooterDecodeError(
            f"footer has invalid size: expected 48 bytes, found {len(data)}"
        )
    meta_offset, meta_size, index_offset, index_size, checksum, magic = _FOOTER.unpack(
        bytes(data)
    )
    if magic != SSTABLE_MAGIC:
        raise FooterDecodeError(
            f"invalid SSTable magic: expected {SSTABLE_MAGIC:#x}, found {magic:#x}"
        )
    return Footer(
        metaindex_handle=BlockHandle(meta_offset, meta_size),
        index_handle=BlockHandle(index_offset, index_size),
        checksum=checksum,
    )


class MetaIndexError(ValueError):
    """Raised when a metaindex block is malformed."""


def _read(fmt: struct.Struct, data: bytes, cursor: int) -> tuple[int, int]:
    end = cursor + fmt.size
    if end > len(data):
        raise MetaIndexError("metaindex section is truncated")
    return fmt.unpack_from(data, cursor)[0], end


class MetaIndex:
    """Named handles to auxiliary blocks such as the bloom filter."""

    def __init__(self) -> None:
        self._entries: list[tuple[str, BlockHandle]] = []

    def insert(self, key: str, handle: BlockHandle) -> None:
        self._entries.append((key, handle))

    def get(self, key: str) -> BlockHandle | None:
        return next((handle for name, handle in self._entries if name == key), None)

    def encode(self) -> bytes:
        parts = [_U32.pack(len(self._entries))]
        for key, handle in self._entries:
            raw_key = key.encode("utf-8")
            parts.append(_U32.pack(len(raw_key)))
            parts.append(raw_key)
            parts.append(_U64.pack(handle.offset))
            parts.append(_U64.pack(handle.size))
        return b"".join(parts)

    @classmethod
    def decode(cls, data: bytes) -> MetaIndex:
        data = bytes(data)
        count, cursor = _read(_U32, data, 0)

        meta = cls()
        seen: set[str] = set()
        for _ in range(count):
            key_len, cursor = _read(_U32, data, cursor)
            key_end = cursor + key_len
            if key_end > len(data):
                raise MetaIndexError("metaindex section is truncated")
            try:
                key = data[cursor:key_end].decode("utf-8")
            except UnicodeDecodeError:
                raise MetaIndexError("metaindex key is invalid UTF-8") from None
            cursor = key_end

            offset, cursor = _read(_U64, data, cursor)
            size, cursor = _read(_U64, data, cursor)

            if key in seen:
                raise MetaIndexError(f"metaindex contains duplicate key: {key}")
            seen.add(key)
            meta.insert(key, BlockHandle(offset, size))

        if cursor != len(data):
            raise MetaIndexError("metaindex section is truncated")
        return meta


@dataclass(frozen=True)
class SSTableBuilderOptions:
    data_block_size_bytes: int = DEFAULT_DATA_BLOCK_SIZE_BYTES
    restart_interval: int = DEFAULT_RESTART_INTERVAL
    bloom_bits_per_key: int = DEFAULT_BITS_PER_KEY
    bloom_hash_functions: int = DEFAULT_HASH_FUNCTIONS


@dataclass(frozen=True)
class SSTableBuildSummary:
    path: Path
    entry_count: int
    data_block_count: int
    file_size_bytes: int


class SSTableBuildError(ValueError):
    """Raised when a table cannot be built from the given options or input."""


class SSTableBuilder:
    """Streams globally sorted key/value pairs into a new table file."""

    def __init__(
        self, path: str | os.PathLike[str], options: SSTableBuilderOptions | None = None
    ) -> None:
        options = options or SSTableBuilderOptions()
        if (
            options.data_block_size_bytes <= 0
            or options.restart_interval <= 0
            or options.bloom_bits_per_key <= 0
            or not 0 < options.bloom_hash_functions <= 255
        ):
            raise SSTableBuildError("builder options are invalid")

        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._options = options
        self._file = open(self._path, "wb")
        self._current_block = DataBlockBuilder(options.restart_interval)
        self._index_entries: list[IndexEntry] = []
        self._all_keys: list[bytes] = []
        self._last_key: bytes | None = None
        self._current_offset = 0
        self._data_block_count = 0
        self._entry_count = 0
        self._finished = False
        self._checksum = 0

    def add(self, key: bytes, value: bytes) -> None:
        """Add the next entry; keys must be strictly increasing."""
        if self._finished:
            raise SSTableBuildError("finish() was already called")
        key = bytes(key)
        if self._last_key is not None and key <= self._last_key:
            raise SSTableBuildError("keys must be globally sorted before writing to SSTable")

        try:
            self._current_block.add(key, value)
        except BlockBuildError as err:
            raise SSTableBuildError(f"data block build error: {err}") from err

        self._last_key = key
        self._all_keys.append(key)
        self._entry_count += 1

        if self._current_block.estimated_size_bytes() >= self._options.data_block_size_bytes:
            self._flush_data_block()

    def finish(self) -> SSTableBuildSummary:
        """Write the filter, metaindex, index and footer, then sync and close."""
        if self._finished:
            raise SSTableBuildError("finish() was already called")

        try:
            self._flush_data_block()

            bloom_builder = BloomFilterBuilder(
                self._options.bloom_bits_per_key, self._options.bloom_hash_functions
            )
            for key in self._all_keys:
                bloom_builder.add_key(key)
            filter_handle = self._write_block(bloom_builder.build().encode())

            metaindex = MetaIndex()
            metaindex.insert(FILTER_META_KEY, filter_handle)
            metaindex_handle = self._write_block(metaindex.encode())

            try:
                index_block = IndexBlock(self._index_entries)
            except IndexBuildError as err:
                raise SSTableBuildError(f"index build error: {err}") from err
            index_handle = self._write_block(index_block.encode())

            checksum = zlib.crc32(encode_footer(metaindex_handle, index_handle, 0), self._checksum)
            self._file.write(encode_footer(metaindex_handle, index_handle, checksum))
            self._current_offset += SSTABLE_FOOTER_SIZE_BYTES

            self._file.flush()
            os.fsync(self._file.fileno())
        finally:
            self._file.close()

        self._finished = True
        return SSTableBuildSummary(
            path=self._path,
            entry_count=self._entry_count,
            data_block_count=self._data_block_count,
            file_size_bytes=self._current_offset,
        )

    def _flush_data_block(self) -> None:
        if self._current_block.is_empty():
            return
        block, self._current_block = (
            self._current_block,
            DataBlockBuilder(self._options.restart_interval),
        )
        try:
            finished = block.finish()
        except BlockBuildError as err:
            raise SSTableBuildError(f"data block build error: {err}") from err

        handle = self._write_block(finished.data)
        self._index_entries.append(IndexEntry(finished.last_key, handle))
        self._data_block_count += 1

    def _write_block(self, data: bytes) -> BlockHandle:
        handle = BlockHandle(self._current_offset, len(data))
        self._file.write(data)
        self._checksum = zlib.crc32(data, self._checksum)
        self._current_offset += len(data)
        return handle