from lsmdb.wal_reader import WalReader, WalReplay
from lsmdb.wal_record import (
    BLOCK_SIZE_BYTES,
    HEADER_LEN,
    RecordType,
    encode_physical,
    parse_segment_id,
    segment_file_name,
)


def _write_segment(directory, segment_id, data):
    path = directory / segment_file_name(segment_id)
    path.write_bytes(data)
    return path


def test_lists_segments_in_order(tmp_path):
    for segment_id in (2, 0, 1):
        _write_segment(tmp_path, segment_id, b"")
    (tmp_path / "unrelated.txt").write_bytes(b"noise")

    reader = WalReader(tmp_path)
    ids = [parse_segment_id(path) for path in reader.segments()]

    assert ids == [0, 1, 2]


def test_truncated_tail_is_detected(tmp_path):
    _write_segment(tmp_path, 0, bytes([1, 2, 3]))

    replay = WalReader(tmp_path).replay()

    assert replay.records == []
    assert replay.dropped_corrupted_tails == 1


def test_reads_full_and_fragmented_records(tmp_path):
    data = (
        encode_physical(RecordType.FULL, b"one")
        + encode_physical(RecordType.FIRST, b"tw")
        + encode_physical(RecordType.MIDDLE, b"o-")
        + encode_physical(RecordType.LAST, b"parts")
    )
    _write_segment(tmp_path, 0, data)

    replay = WalReader(tmp_path).replay()
    assert replay == WalReplay(records=[b"one", b"two-parts"], dropped_corrupted_tails=0)


def test_records_span_segments_in_order(tmp_path):
    _write_segment(tmp_path, 1, encode_physical(RecordType.FULL, b"second"))
    _write_segment(tmp_path, 0, encode_physical(RecordType.FULL, b"first"))

    assert WalReader(tmp_path).read_all() == [b"first", b"second"]


def test_skips_block_trailer_padding(tmp_path):
    trailer = 5
    first_payload = b"a" * (BLOCK_SIZE_BYTES - HEADER_LEN - trailer)
    data = (
        encode_physical(RecordType.FULL, first_payload)
        + bytes(trailer)
        + encode_physical(RecordType.FULL, b"next-block")
    )
    _write_segment(tmp_path, 0, data)

    replay = WalReader(tmp_path).replay()
    assert replay.records == [first_payload, b"next-block"]
    assert replay.dropped_corrupted_tails == 0


def test_checksum_corruption_keeps_prefix(tmp_path):
    good = encode_physical(RecordType.FULL, b"good")
    bad = bytearray(encode_physical(RecordType.FULL, b"bad"))
    bad[-1] ^= 0xFF
    _write_segment(tmp_path, 0, good + bytes(bad) + encode_physical(RecordType.FULL, b"after"))

    replay = WalReader(tmp_path).replay()
    assert replay.records == [b"good"]
    assert replay.dropped_corrupted_tails == 1


def test_orphan_middle_fragment_is_corruption(tmp_path):
    _write_segment(tmp_path, 0, encode_physical(RecordType.MIDDLE, b"orphan"))

    replay = WalReader(tmp_path).replay()
    assert replay.records == []
    assert replay.dropped_corrupted_tails == 1


def test_unterminated_record_is_dropped(tmp_path):
    data = encode_physical(RecordType.FULL, b"kept") + encode_physical(RecordType.FIRST, b"half")
    _write_segment(tmp_path, 0, data)

    replay = WalReader(tmp_path).replay()
    assert replay.records == [b"kept"]
    assert replay.dropped_corrupted_tails == 1


def test_corruption_in_one_segment_does_not_hide_next(tmp_path):
    _write_segment(tmp_path, 0, bytes([7, 7]))
    _write_segment(tmp_path, 1, encode_physical(RecordType.FULL, b"later"))

    replay = WalReader(tmp_path).replay()
    assert replay.records == [b"later"]
    assert replay.dropped_corrupted_tails == 1