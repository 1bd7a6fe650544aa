# lsmdb

The storage layer of a log-structured merge-tree database. It is plain Python
and needs no third-party packages. It has three parts:

- **Memtables**: `lsmdb.skiplist.SkipList` is a thread-safe sorted map from
  byte keys to byte values. It keeps its data in an `lsmdb.arena.Arena`.
  `lsmdb.memtable.MemTable` wraps the skip list and tracks an approximate
  size in bytes. Its keys are internal keys: a user key, then a big-endian
  sequence number, then a `ValueType` byte (`encode_internal_key` /
  `decode_internal_key`). `MemTableManager` holds one mutable table. When
  that table reaches the size limit, the manager moves it to the immutable
  list and starts a new one.
- **Write-ahead log**: `lsmdb.wal_writer.WalWriter` writes records into
  numbered segment files (`wal-<20 digits>.log`). It frames each record in
  32 KiB blocks and protects it with a CRC32. When a segment would exceed
  `segment_size_bytes`, the writer starts the next one. `SyncMode` sets when
  data is fsynced: `NEVER`, `ON_COMMIT` or `ALWAYS`.
  `lsmdb.wal_reader.WalReader` replays the segments in id order. When a
  segment ends in a torn or corrupted tail, the reader stops there and counts
  it in `WalReplay.dropped_corrupted_tails`.
- **SSTables**: `lsmdb.sstable_builder.SSTableBuilder` writes strictly
  increasing key/value pairs to a table file. The file holds
  prefix-compressed data blocks (`lsmdb.block`), a Bloom filter
  (`lsmdb.bloom`), a metaindex, an index block (`lsmdb.sstable_index`) and a
  48-byte footer with a CRC32 of the file. `lsmdb.sstable_reader.SSTableReader`
  checks the footer and the checksum when it opens a file. It then serves
  point lookups and range scans, and caches each data block it loads.

## Installation

```
pip install .
```

## Usage

```python
from lsmdb.memtable import MemTable, decode_internal_key
from lsmdb.wal_writer import WalWriter, WalWriterOptions, SyncMode
from lsmdb.wal_reader import WalReader
from lsmdb.sstable_builder import SSTableBuilder, SSTableBuilderOptions
from lsmdb.sstable_reader import SSTableReader

# Memtable
table = MemTable(4096)
table.put(b"users:1", 1, b"alice")
for entry in table:
    decoded = decode_internal_key(entry.internal_key)
    print(decoded.user_key, decoded.sequence, decoded.value_type)

# Write-ahead log
options = WalWriterOptions(segment_size_bytes=64 * 1024 * 1024, sync_mode=SyncMode.ON_COMMIT)
with WalWriter("wal-dir", options) as wal:
    wal.append_and_commit(b"record-1")

print(WalReader("wal-dir").read_all())   # [b'record-1']

# SSTable
builder = SSTableBuilder("table.sst", SSTableBuilderOptions())
for i in range(100):
    builder.add(f"k{i:04}".encode(), f"v{i:04}".encode())
summary = builder.finish()

with SSTableReader("table.sst") as reader:
    print(reader.get(b"k0042"))                     # b'v0042'
    print(reader.scan_range(b"k0010", b"k0013"))    # three (key, value) pairs
```

## Errors

All of the package's own exceptions derive from `ValueError`, except
`SSTableReadError`.

- `RecordEncodeError`: a WAL payload is longer than a u32 can hold.
- `RecordDecodeError`: a WAL record is malformed. Its subclass
  `ChecksumMismatchError` means the stored checksum does not match the data.
- `BlockDecodeError`, `BloomDecodeError`, `IndexDecodeError`,
  `FooterDecodeError` and `MetaIndexError`: encoded bytes are malformed.
- `BlockBuildError`, `IndexBuildError` and `SSTableBuildError`: keys are out
  of order, options are invalid, or `finish()` has already been called.
- `WalWriteError`: the configured segment size is below the minimum of
  10 bytes.
- `SSTableReadError`: a table file cannot be read. It also wraps any decode
  error found in the file. Its subclasses are `FileTooSmallError` and
  `SSTableChecksumError`.

Failures of the file system itself, such as a missing file, propagate as
`OSError`.

## What this package does not do

The package provides the building blocks only. It does not include:

- a storage engine that ties memtables, the WAL and SSTables together;
- flushing of memtables to SSTables;
- compaction or a manifest;
- a SQL layer;
- a network server or a command-line tool.

## Running the tests

```
pip install .[test]
pytest
```