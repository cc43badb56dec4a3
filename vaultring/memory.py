"""Helpers for wiping sensitive buffers."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Union

Buffer = Union[bytearray, memoryview, bytes, None]


def zeroize(buf: Buffer) -> None:
    """Overwrite a mutable buffer with zeros in place.

    Immutable ``bytes`` and ``None`` are accepted and left untouched.
    """
    if isinstance(buf, (bytearray, memoryview)) and len(buf) > 0:
        buf[:] = bytes(len(buf))


def zeroize_all(bufs: Iterable[Buffer] | None) -> None:
    """Zeroize every buffer of an iterable."""
    for buf in bufs or ():
        zeroize(buf)