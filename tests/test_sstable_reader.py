import pytest

from lsmdb.sstable_builder import SSTableBuilder, SSTableBuilderOptions
from lsmdb.sstable_reader import (
    FileTooSmallError,
    SSTableChecksumError,
    SSTableReader,
    SSTableReadError,
)


def _build_table(path, count, options=None):
    builder = SSTableBuilder(path, options)
    for i in range(count):
        builder.add(f"k{i:04}".encode(), f"value-{i:04}".encode())
    return builder.finish()


def test_builder_reader_roundtrip(tmp_path):
    path = tmp_path / "table.sst"
    summary = _build_table(path, 250)
    assert summary.entry_count == 250
    assert summary.data_block_count >= 1

    with SSTableReader(path) as reader:
        assert reader.get(b"k0000") == b"value-0000"
        assert reader.get(b"k0123") == b"value-0123"
        assert reader.get(b"k9999") is None

        rows = reader.scan_range(b"k0100", b"k0110")
        assert len(rows) == 10
        assert rows[0][0] == b"k0100"
        assert rows[-1][0] == b"k0109"

        assert reader.get(b"k0102") == b"value-0102"
        assert reader.get(b"k0103") == b"value-0103"
        assert reader.cached_block_count() >= 1


def test_rejects_tiny_file(tmp_path):
    path = tmp_path / "tiny.sst"
    path.write_bytes(bytes(7))
    with pytest.raises(FileTooSmallError) as info:
        SSTableReader(path)
    assert info.value.size == 7


def test_rejects_corrupted_file_with_checksum_mismatch(tmp_path):
    path = tmp_path / "table.sst"
    _build_table(path, 32)
    data = bytearray(path.read_bytes())
    data[0] ^= 0x5A
    path.write_bytes(bytes(data))

    with pytest.raises(SSTableChecksumError) as info:
        SSTableReader(path)
    assert info.value.expected != info.value.found


def test_rejects_bad_magic(tmp_path):
    path = tmp_path / "bad.sst"
    path.write_bytes(bytes(64))
    with pytest.raises(SSTableReadError, match="invalid footer"):
        SSTableReader(path)


def test_full_scan_returns_all_rows_in_order(tmp_path):
    path = tmp_path / "table.sst"
    options = SSTableBuilderOptions(data_block_size_bytes=128)
    summary = _build_table(path, 100, options)
    assert summary.data_block_count > 1

    with SSTableReader(path) as reader:
        rows = reader.scan_range()
        assert [key for key, _ in rows] == [f"k{i:04}".encode() for i in range(100)]
        assert rows[42] == (b"k0042", b"value-0042")


def test_scan_with_only_end_bound(tmp_path):
    path = tmp_path / "table.sst"
    _build_table(path, 50)
    with SSTableReader(path) as reader:
        rows = reader.scan_range(None, b"k0005")
        expected = [b"k0000", b"k0001", b"k0002", b"k0003", b"k0004"]
        assert [key for key, _ in rows] == expected


def test_scan_with_only_start_bound(tmp_path):
    path = tmp_path / "table.sst"
    _build_table(path, 50)
    with SSTableReader(path) as reader:
        rows = reader.scan_range(b"k0047")
        assert [key for key, _ in rows] == [b"k0047", b"k0048", b"k0049"]


def test_scan_empty_when_start_not_below_end(tmp_path):
    path = tmp_path / "table.sst"
    _build_table(path, 10)
    with SSTableReader(path) as reader:
        assert reader.scan_range(b"k0005", b"k0005") == []
        assert reader.scan_range(b"k0008", b"k0002") == []


def test_scan_past_last_key_is_empty(tmp_path):
    path = tmp_path / "table.sst"
    _build_table(path, 10)
    with SSTableReader(path) as reader:
        assert reader.scan_range(b"z") == []


def test_path_and_empty_cache_after_open(tmp_path):
    path = tmp_path / "table.sst"
    _build_table(path, 5)
    with SSTableReader(path) as reader:
        assert reader.path() == path
        assert reader.cached_block_count() == 0


def test_empty_table_has_no_rows(tmp_path):
    path = tmp_path / "empty.sst"
    summary = SSTableBuilder(path, None).finish()
    assert summary.entry_count == 0
    with SSTableReader(path) as reader:
        assert reader.get(b"anything") is None
        assert reader.scan_range() == []