import struct

import pytest

from lsmdb.block import (
    DEFAULT_RESTART_INTERVAL,
    BlockBuildError,
    BlockDecodeError,
    DataBlock,
    DataBlockBuilder,
)


def _build(pairs, interval=DEFAULT_RESTART_INTERVAL):
    builder = DataBlockBuilder(interval)
    for key, value in pairs:
        builder.add(key, value)
    return builder.finish()


def test_block_roundtrip_and_point_lookup():
    finished = _build([(b"apple", b"1"), (b"apricot", b"2"), (b"banana", b"3")], 2)
    block = DataBlock(finished.data)

    assert block.get(b"apple") == b"1"
    assert block.get(b"banana") == b"3"
    assert block.get(b"blueberry") is None


def test_iterator_returns_sorted_entries():
    pairs = [(f"k{i:04}".encode(), f"v{i:04}".encode()) for i in range(32)]
    block = DataBlock(_build(pairs).data)

    keys = [key for key, _ in block]
    assert keys == sorted(keys)
    assert len(set(keys)) == len(keys)
    assert block.entry_count() == 32


def test_rejects_unsorted_keys():
    builder = DataBlockBuilder(4)
    builder.add(b"b", b"1")
    with pytest.raises(BlockBuildError, match="strictly increasing"):
        builder.add(b"a", b"2")


def test_rejects_duplicate_keys():
    builder = DataBlockBuilder(4)
    builder.add(b"same", b"1")
    with pytest.raises(BlockBuildError, match="strictly increasing"):
        builder.add(b"same", b"2")


def test_invalid_restart_interval():
    with pytest.raises(BlockBuildError, match="invalid restart interval: 0"):
        DataBlockBuilder(0)


def test_finish_empty_block_fails():
    builder = DataBlockBuilder()
    assert builder.is_empty()
    with pytest.raises(BlockBuildError, match="empty data block"):
        builder.finish()


def test_entries_match_inputs_across_restarts():
    pairs = [(f"key-{i:03}".encode(), f"value-{i}".encode()) for i in range(50)]
    block = DataBlock(_build(pairs, 3).data)
    assert block.entries() == pairs
    for key, value in pairs:
        assert block.get(key) == value
    assert block.get(b"key-") is None
    assert block.get(b"zzz") is None


def test_single_entry_encoding_is_fixed():
    finished = _build([(b"a", b"1")])
    expected = struct.pack("<III", 0, 1, 1) + b"a1" + struct.pack("<I", 0) + struct.pack("<I", 1)
    assert finished.data == expected
    assert finished.last_key == b"a"
    assert finished.entry_count == 1


def test_prefix_compression_shares_prefix():
    finished = _build([(b"apple", b""), (b"apricot", b"")])
    second_header = struct.unpack_from("<III", finished.data, 12 + 5)
    assert second_header == (2, 5, 0)


def test_estimated_size_matches_finished_size():
    builder = DataBlockBuilder(2)
    for i in range(7):
        builder.add(f"k{i}".encode(), b"v")
    estimate = builder.estimated_size_bytes()
    assert len(builder.finish().data) == estimate


def test_decode_rejects_too_small():
    with pytest.raises(BlockDecodeError, match="too small"):
        DataBlock(b"\x00\x00")


def test_decode_rejects_zero_restart_count():
    with pytest.raises(BlockDecodeError, match="invalid restart count: 0"):
        DataBlock(struct.pack("<I", 0))


def test_decode_rejects_truncated_restart_section():
    with pytest.raises(BlockDecodeError, match="restart metadata is truncated"):
        DataBlock(struct.pack("<I", 5))


def test_decode_rejects_missing_zero_restart():
    entry = struct.pack("<III", 0, 1, 1) + b"a1"
    raw = entry + struct.pack("<I", 5) + struct.pack("<I", 1)
    with pytest.raises(BlockDecodeError, match="must start at 0"):
        DataBlock(raw)


def test_decode_rejects_out_of_bounds_restart():
    raw = struct.pack("<I", 0) + struct.pack("<I", 1)
    with pytest.raises(BlockDecodeError, match="out of bounds"):
        DataBlock(raw)


def test_decode_rejects_invalid_entry_length():
    entry = struct.pack("<III", 0, 1, 50) + b"a1"
    raw = entry + struct.pack("<I", 0) + struct.pack("<I", 1)
    with pytest.raises(BlockDecodeError, match="payload length is invalid"):
        DataBlock(raw)