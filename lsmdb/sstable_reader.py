"""Reader for table files: footer and checksum checks, bloom filter, and cached data blocks."""

from __future__ import annotations

import os
import threading
import zlib
from pathlib import Path
from typing import BinaryIO

from lsmdb.block import BlockDecodeError, DataBlock
from lsmdb.bloom import BloomDecodeError, BloomFilter
from lsmdb.sstable_builder import (
    FILTER_META_KEY,
    SSTABLE_FOOTER_CHECKSUM_OFFSET_BYTES,
    SSTABLE_FOOTER_CHECKSUM_SIZE_BYTES,
    SSTABLE_FOOTER_SIZE_BYTES,
    FooterDecodeError,
    MetaIndex,
    MetaIndexError,
    decode_footer,
)
from lsmdb.sstable_index import BlockHandle, IndexBlock, IndexDecodeError

_CHUNK_SIZE = 8192


class SSTableReadError(Exception):
    """Raised when a table file cannot be opened or read."""


class FileTooSmallError(SSTableReadError):
    """Raised when a file is too short to hold a footer."""

    def __init__(self, size: int) -> None:
        super().__init__(f"file is too small to contain an SSTable footer: {size} bytes")
        self.size = size


class SSTableChecksumError(SSTableReadError):
    """Raised when the stored checksum does not match the file contents."""

    def __init__(self, expected: int, found: int) -> None:
        super().__init__(
            f"SSTable checksum mismatch: expected {expected:#x}, found {found:#x}"
        )
        self.expected = expected
        self.found = found


def _read_handle_bytes(file: BinaryIO, handle: BlockHandle) -> bytes:
    file.seek(handle.offset)
    data = file.read(handle.size)
    if len(data) != handle.size:
        raise SSTableReadError(
            f"I/O error: expected {handle.size} bytes at offset {handle.offset}, "
            f"found {len(data)}"
        )
    return data


def _compute_file_checksum(file: BinaryIO, file_size: int) -> int:
    """CRC32 of the whole file with the footer's checksum field read as zeros."""
    checksum_start = file_size - SSTABLE_FOOTER_SIZE_BYTES + SSTABLE_FOOTER_CHECKSUM_OFFSET_BYTES
    checksum_end = checksum_start + SSTABLE_FOOTER_CHECKSUM_SIZE_BYTES

    crc = 0
    offset = 0
    file.seek(0)
    while chunk := file.read(_CHUNK_SIZE):
        chunk_end = offset + len(chunk)
        if offset < checksum_end and chunk_end > checksum_start:
            sanitized = bytearray(chunk)
            zero_start = max(checksum_start - offset, 0)
            zero_end = min(checksum_end, chunk_end) - offset
            sanitized[zero_start:zero_end] = bytes(zero_end - zero_start)
            crc = zlib.crc32(sanitized, crc)
        else:
            crc = zlib.crc32(chunk, crc)
        offset = chunk_end
    return crc


class SSTableReader:
    """Point lookups and range scans over one immutable table file."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        file = open(self._path, "rb")
        try:
            self._index, self._bloom = self._load_metadata(file)
        except BaseException:
            file.close()
            raise
        self._file = file
        self._file_lock = threading.Lock()
        self._cache_lock = threading.Lock()
        self._cache: dict[int, DataBlock] = {}

    @staticmethod
    def _load_metadata(file: BinaryIO) -> tuple[IndexBlock, BloomFilter | None]:
        file_size = os.fstat(file.fileno()).st_size
        if file_size < SSTABLE_FOOTER_SIZE_BYTES:
            raise FileTooSmallError(file_size)

        file.seek(file_size - SSTABLE_FOOTER_SIZE_BYTES)
        try:
            footer = decode_footer(file.read(SSTABLE_FOOTER_SIZE_BYTES))
        except FooterDecodeError as err:
            raise SSTableReadError(f"invalid footer: {err}") from err

        found = _compute_file_checksum(file, file_size)
        if found != footer.checksum:
            raise SSTableChecksumError(footer.checksum, found)

        try:
            index = IndexBlock.decode(_read_handle_bytes(file, footer.index_handle))
        except IndexDecodeError as err:
            raise SSTableReadError(f"invalid index block: {err}") from err

        try:
            metaindex = MetaIndex.decode(_read_handle_bytes(file, footer.metaindex_handle))
        except MetaIndexError as err:
            raise SSTableReadError(f"invalid metaindex block: {err}") from err

        bloom = None
        filter_handle = metaindex.get(FILTER_META_KEY)
        if filter_handle is not None:
            try:
                bloom = BloomFilter.decode(_read_handle_bytes(file, filter_handle))
            except BloomDecodeError as err:
                raise SSTableReadError(f"invalid bloom filter block: {err}") from err

        return index, bloom

    def get(self, key: bytes) -> bytes | None:
        """Return the value for ``key``, or None if the table does not hold it."""
        key = bytes(key)
        if self._bloom is not None and not self._bloom.may_contain(key):
            return None

        entry = self._index.find_block_for_key(key)
        if entry is None:
            return None
        return self._load_block(entry.handle).get(key)

    def scan_range(
        self,
        start_key_inclusive: bytes | None = None,
        end_key_exclusive: bytes | None = None,
    ) -> list[tuple[bytes, bytes]]:
        """Entries with start <= key < end, in key order; None means unbounded."""
        start = None if start_key_inclusive is None else bytes(start_key_inclusive)
        end = None if end_key_exclusive is None else bytes(end_key_exclusive)
        if start is not None and end is not None and start >= end:
            return []

        start_index = 0
        if start is not None:
            found = self._index.find_block_index_for_key(start)
            if found is not None:
                start_index = found

        entries = self._index.entries()
        rows: list[tuple[bytes, bytes]] = []
        for entry in entries[start_index:]:
            for key, value in self._load_block(entry.handle):
                if start is not None and key < start:
                    continue
                if end is not None and key >= end:
                    return rows
                rows.append((key, value))
        return rows

    def cached_block_count(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        with self._file_lock:
            if not self._file.closed:
                self._file.close()

    def __enter__(self) -> SSTableReader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _load_block(self, handle: BlockHandle) -> DataBlock:
        with self._cache_lock:
            cached = self._cache.get(handle.offset)
        if cached is not None:
            return cached

        with self._file_lock:
            data = _read_handle_bytes(self._file, handle)
        try:
            block = DataBlock(data)
        except BlockDecodeError as err:
            raise SSTableReadError(f"invalid data block: {err}") from err

        with self._cache_lock:
            return self._cache.setdefault(handle.offset, block)