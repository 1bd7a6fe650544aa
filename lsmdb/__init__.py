"""LSM-tree storage components: memtables, write-ahead log and SSTables."""

__version__ = "0.1.0"