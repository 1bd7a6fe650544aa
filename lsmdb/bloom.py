"""Bloom filter built with double hashing over CRC32."""

from __future__ import annotations

import zlib
from collections.abc import Iterable

DEFAULT_BITS_PER_KEY = 10
DEFAULT_HASH_FUNCTIONS = 10

_MIN_BIT_LEN = 64
_U32_MASK = 0xFFFFFFFF
_SECONDARY_SEED = zlib.crc32(b"\xa5")


class BloomDecodeError(ValueError):
    """Raised when encoded filter bytes are malformed."""


def _base_hashes(key: bytes) -> tuple[int, int]:
    primary = zlib.crc32(key)
    secondary = max(zlib.crc32(key, _SECONDARY_SEED), 1)
    return primary, secondary


def _check_hash_functions(hash_functions: int) -> int:
    if not 0 <= hash_functions <= 255:
        raise ValueError(f"hash function count must fit in one byte: {hash_functions}")
    return hash_functions


class BloomFilterBuilder:
    """Collects keys and sizes a filter for them."""

    def __init__(
        self,
        bits_per_key: int = DEFAULT_BITS_PER_KEY,
        hash_functions: int = DEFAULT_HASH_FUNCTIONS,
    ) -> None:
        self._bits_per_key = max(bits_per_key, 1)
        self._hash_functions = max(_check_hash_functions(hash_functions), 1)
        self._keys: list[bytes] = []

    def add_key(self, key: bytes) -> None:
        self._keys.append(bytes(key))

    def build(self) -> BloomFilter:
        bit_len = max(len(self._keys) * self._bits_per_key, _MIN_BIT_LEN)
        bloom = BloomFilter(bytearray((bit_len + 7) // 8), bit_len, self._hash_functions)
        for key in self._keys:
            bloom.insert(key)
        return bloom


class BloomFilter:
    """A fixed-size bit array answering probable-membership queries."""

    def __init__(self, bits: bytes, bit_len: int, hash_functions: int) -> None:
        self._bits = bytearray(bits)
        self._bit_len = bit_len
        self._hash_functions = _check_hash_functions(hash_functions)

    @classmethod
    def from_keys(
        cls,
        keys: Iterable[bytes],
        bits_per_key: int = DEFAULT_BITS_PER_KEY,
        hash_functions: int = DEFAULT_HASH_FUNCTIONS,
    ) -> BloomFilter:
        builder = BloomFilterBuilder(bits_per_key, hash_functions)
        for key in keys:
            builder.add_key(key)
        return builder.build()

    @property
    def bit_len(self) -> int:
        return self._bit_len

    @property
    def hash_functions(self) -> int:
        return self._hash_functions

    def _bit_positions(self, key: bytes) -> Iterable[int]:
        primary, secondary = _base_hashes(bytes(key))
        for i in range(self._hash_functions):
            yield ((primary + i * secondary) & _U32_MASK) % self._bit_len

    def insert(self, key: bytes) -> None:
        if self._bit_len == 0:
            return
        for bit in self._bit_positions(key):
            self._bits[bit // 8] |= 1 << (bit % 8)

    def may_contain(self, key: bytes) -> bool:
        """False means definitely absent; True means possibly present."""
        if self._bit_len == 0:
            return False
        return all(self._bits[bit // 8] & (1 << (bit % 8)) for bit in self._bit_positions(key))

    def encode(self) -> bytes:
        return bytes([self._hash_functions]) + self._bit_len.to_bytes(4, "little") + bytes(self._bits)

    @classmethod
    def decode(cls, data: bytes) -> BloomFilter:
        data = bytes(data)
        if len(data) < 5:
            raise BloomDecodeError("bloom filter payload is truncated")

        hash_functions = data[0]
        if hash_functions == 0:
            raise BloomDecodeError("bloom filter has invalid hash count")

        bit_len = int.from_bytes(data[1:5], "little")
        if bit_len == 0:
            raise BloomDecodeError("bloom filter has invalid bit length")

        payload = data[5:]
        if len(payload) != (bit_len + 7) // 8:
            raise BloomDecodeError("bloom filter has invalid bit length")

        return cls(payload, bit_len, hash_functions)