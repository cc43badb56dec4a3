"""Shamir secret sharing over GF(2^8)."""

from __future__ import annotations

import os
from collections.abc import Sequence

from .errors import KeyringError


def _build_tables() -> tuple[list[int], list[int]]:
    exp = [0] * 510
    log = [0] * 256
    value = 1
    for power in range(255):
        exp[power] = value
        log[value] = power
        # multiply by the generator 0x03 modulo the AES polynomial
        doubled = value << 1
        if doubled & 0x100:
            doubled ^= 0x11B
        value = doubled ^ value
    for power in range(255, 510):
        exp[power] = exp[power - 255]
    return exp, log


_EXP, _LOG = _build_tables()


def _mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return _EXP[_LOG[a] + _LOG[b]]


def _div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("division by zero in GF(256)")
    if a == 0:
        return 0
    return _EXP[(_LOG[a] - _LOG[b]) % 255]


def _evaluate(coefficients: Sequence[int], x: int) -> int:
    result = 0
    for coefficient in reversed(coefficients):
        result = _mul(result, x) ^ coefficient
    return result


def _random_x_coordinates(count: int) -> list[int]:
    pool = list(range(1, 256))
    chosen = []
    for _ in range(count):
        index = int.from_bytes(os.urandom(2), "little") % len(pool)
        chosen.append(pool.pop(index))
    return chosen


def split(secret: bytes, parts: int, threshold: int) -> list[bytearray]:
    """Split a secret into shares, any ``threshold`` of which rebuild it.

    Each share is one byte longer than the secret; its last byte is the
    share's x coordinate.
    """
    if parts < threshold:
        raise KeyringError("parts cannot be less than threshold")
    if parts > 255:
        raise KeyringError("parts cannot exceed 255")
    if threshold < 2:
        raise KeyringError("threshold must be at least 2")
    if threshold > 255:
        raise KeyringError("threshold cannot exceed 255")
    if len(secret) == 0:
        raise KeyringError("cannot split an empty secret")

    xs = _random_x_coordinates(parts)
    shares = [bytearray(len(secret) + 1) for _ in range(parts)]
    for share, x in zip(shares, xs):
        share[-1] = x

    for position, secret_byte in enumerate(secret):
        coefficients = [secret_byte, *os.urandom(threshold - 1)]
        for share, x in zip(shares, xs):
            share[position] = _evaluate(coefficients, x)
    return shares


def combine(parts: Sequence[bytes]) -> bytearray:
    """Rebuild a secret from shares made by :func:`split`.

    A single share is the secret itself and is returned as a copy.
    """
    if len(parts) == 0:
        raise KeyringError("no parts were given to reconstruct the secret")
    if len(parts) == 1:
        return bytearray(parts[0])

    length = len(parts[0])
    if length < 2:
        raise KeyringError("parts must be at least two bytes")
    if any(len(part) != length for part in parts):
        raise KeyringError("all parts must be the same length")

    xs = [part[-1] for part in parts]
    if len(set(xs)) != len(xs):
        raise KeyringError("duplicate part detected")

    basis = []
    for i, xi in enumerate(xs):
        weight = 1
        for j, xj in enumerate(xs):
            if i != j:
                weight = _mul(weight, _div(xj, xi ^ xj))
        basis.append(weight)

    secret = bytearray(length - 1)
    for position in range(length - 1):
        value = 0
        for part, weight in zip(parts, basis):
            value ^= _mul(part[position], weight)
        secret[position] = value
    return secret