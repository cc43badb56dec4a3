from vaultring.memory import zeroize, zeroize_all


def test_zeroize_bytearray():
    buf = bytearray(b"secret data")
    zeroize(buf)
    assert buf == bytearray(len(b"secret data"))


def test_zeroize_memoryview_changes_underlying_buffer():
    backing = bytearray(b"abcdef")
    zeroize(memoryview(backing)[2:])
    assert backing == bytearray(b"ab\x00\x00\x00\x00")


def test_zeroize_empty_buffer_keeps_it_empty():
    buf = bytearray()
    zeroize(buf)
    assert buf == bytearray()


def test_zeroize_odd_length_buffer_is_fully_cleared():
    buf = bytearray(b"x" * 37)
    zeroize(buf)
    assert buf == bytearray(37)


def test_zeroize_all_clears_each_buffer():
    first = bytearray(b"one")
    second = bytearray(b"second")
    zeroize_all([first, None, second])
    assert not any(first)
    assert not any(second)
    assert len(second) == len(b"second")


def test_zeroize_all_accepts_none_and_memoryviews():
    zeroize_all(None)
    backing = bytearray(b"abcdef")
    zeroize_all((memoryview(backing)[:3],))
    assert backing == bytearray(b"\x00\x00\x00def")