import pytest

from lsmdb.arena import DEFAULT_ARENA_BLOCK_SIZE_BYTES, Arena, ArenaSlice


def test_allocates_and_reads_slices():
    arena = Arena(8)
    first = arena.allocate(b"abc")
    second = arena.allocate(b"xyz")

    assert arena.get(first) == b"abc"
    assert arena.get(second) == b"xyz"
    assert arena.allocated_bytes() == 6


def test_allocates_new_block_when_current_is_full():
    arena = Arena(4)
    arena.allocate(b"1234")
    second = arena.allocate(b"56")

    assert arena.get(second) == b"56"
    assert arena.reserved_bytes() >= 8


def test_empty_allocation_returns_empty_bytes():
    arena = Arena(16)
    empty = arena.allocate(b"")
    assert arena.get(empty) == b""
    assert len(empty) == 0
    assert arena.allocated_bytes() == 0


def test_oversized_allocation_gets_its_own_block():
    arena = Arena(4)
    big = arena.allocate(b"0123456789")
    assert arena.get(big) == b"0123456789"
    assert arena.reserved_bytes() == 10


def test_zero_block_size_is_clamped_to_one():
    arena = Arena(0)
    assert arena.block_size == 1
    piece = arena.allocate(b"ab")
    assert arena.get(piece) == b"ab"
    assert arena.reserved_bytes() == 2


def test_default_block_size():
    arena = Arena()
    arena.allocate(b"x")
    assert arena.reserved_bytes() == DEFAULT_ARENA_BLOCK_SIZE_BYTES


@pytest.mark.parametrize("chunks", [[b"a"], [b"ab", b"cd", b"ef"], [b"long-value", b"", b"z"]])
def test_all_slices_remain_readable(chunks):
    arena = Arena(3)
    slices = [arena.allocate(chunk) for chunk in chunks]
    assert [arena.get(s) for s in slices] == chunks
    assert arena.allocated_bytes() == sum(len(c) for c in chunks)
    assert arena.reserved_bytes() >= arena.allocated_bytes()


def test_slice_length():
    assert len(ArenaSlice(block_index=0, offset=2, length=5)) == 5