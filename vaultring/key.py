"""Keyring keys: the root key and the data encryption keys."""

from __future__ import annotations

import hashlib
import hmac
import os
import struct
import threading
import time
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from . import ciphers, shamir
from .ciphers import Cipher
from .errors import EngineNotSupportedError, InvalidStoredDataError, KeyringError
from .memory import zeroize

RandomBytes = Callable[[int], bytes]

KEY_VERSION = 1
ID_SIZE = 4

_EPOCH = datetime.fromtimestamp(0, timezone.utc)
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_MASK64 = (1 << 64) - 1

_cipher_lock = threading.Lock()


def _fnv1a32(*chunks: bytes) -> int:
    value = 0x811C9DC5
    for chunk in chunks:
        for byte in chunk:
            value = ((value ^ byte) * 0x01000193) & 0xFFFFFFFF
    return value


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


class _Reader:
    def __init__(self, buf: bytes) -> None:
        self.buf = memoryview(buf)
        self.offset = 0

    def take(self, size: int) -> memoryview:
        end = self.offset + size
        if end > len(self.buf):
            raise InvalidStoredDataError()
        chunk = self.buf[self.offset:end]
        self.offset = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> int:
        return fmt.unpack(self.take(fmt.size))[0]

    def varint(self) -> int:
        result = 0
        for shift in range(0, 70, 7):
            byte = self.take(1)[0]
            result |= (byte & 0x7F) << shift
            if byte < 0x80:
                return result
        raise InvalidStoredDataError()

    def sized(self) -> memoryview:
        return self.take(self.varint())

    @property
    def done(self) -> bool:
        return self.offset == len(self.buf)


@dataclass(eq=False)
class KeyringKey:
    """A key together with its identifier, engine and creation time."""

    id: int
    engine: str
    key: bytearray
    creation_time: datetime
    random_bytes: RandomBytes | None = field(default=None, repr=False)
    _cipher: Cipher | None = field(default=None, init=False, repr=False)

    @classmethod
    def generate(cls, engine: str, random_bytes: RandomBytes | None = None) -> KeyringKey:
        """Create a fresh key for the engine."""
        key = ciphers.generate_key(engine, random_bytes)
        now = datetime.now(timezone.utc)
        key_id = _fnv1a32(bytes(key), str(now).encode())
        return cls(id=key_id, engine=engine, key=key, creation_time=now, random_bytes=random_bytes)

    @classmethod
    def deserialize(cls, buf: bytes, random_bytes: RandomBytes | None = None) -> KeyringKey:
        if len(buf) <= _U16.size:
            raise InvalidStoredDataError()
        reader = _Reader(buf)
        version = reader.unpack(_U16)
        if version != KEY_VERSION:
            raise KeyringError("unsupported keyring key version")
        key_id = reader.unpack(_U32)
        try:
            engine = bytes(reader.sized()).decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidStoredDataError() from None
        key = bytearray(reader.sized())
        encoded_time = reader.unpack(_U64)
        if not reader.done:
            zeroize(key)
            raise InvalidStoredDataError()
        if not ciphers.is_engine_supported(engine):
            zeroize(key)
            raise EngineNotSupportedError()
        seconds = (encoded_time >> 1) ^ -(encoded_time & 1)
        return cls(
            id=key_id,
            engine=engine,
            key=key,
            creation_time=datetime.fromtimestamp(seconds, timezone.utc),
            random_bytes=random_bytes,
        )

    def zeroize(self) -> None:
        """Wipe the key material and forget everything else."""
        self.id = 0
        self.engine = ""
        zeroize(self.key)
        self.creation_time = _EPOCH
        self.random_bytes = None

    def serialize(self) -> bytes:
        engine = self.engine.encode("utf-8")
        seconds = int(self.creation_time.timestamp())
        encoded_time = ((seconds << 1) ^ (seconds >> 63)) & _MASK64
        return b"".join(
            (
                _U16.pack(KEY_VERSION),
                _U32.pack(self.id),
                _encode_varint(len(engine)),
                engine,
                _encode_varint(len(self.key)),
                bytes(self.key),
                _U64.pack(encoded_time),
            )
        )

    def save(self, tx: Any, key: str) -> None:
        tx.put(key, self.serialize())

    def get_cipher(self) -> Cipher:
        """The cipher built from this key, created once on first use."""
        if self._cipher is None:
            with _cipher_lock:
                if self._cipher is None:
                    self._cipher = ciphers.new_from_key(self.engine, bytes(self.key), self.random_bytes)
        return self._cipher

    def hash(self, nonce: bytes) -> bytes:
        digest = hashlib.sha512()
        digest.update(bytes(self.key))
        digest.update(_U32.pack(self.id))
        digest.update(bytes(nonce))
        return digest.digest()

    def encrypted_hash(self, nonce: bytes) -> bytes:
        return self.get_cipher().encrypt(self.hash(nonce))

    def validate_encrypted_hash(self, encrypted_hash: bytes, nonce: bytes) -> bool:
        decrypted = self.get_cipher().decrypt(encrypted_hash)
        return hmac.compare_digest(self.hash(nonce), bytes(decrypted))

    def split(self, shares: int, threshold: int) -> list[bytearray]:
        """Split the serialized key into shares."""
        if shares == 1:
            return [bytearray(self.serialize())]
        return shamir.split(self.serialize(), shares, threshold)


def add_new_encryption_key(
    keys: MutableMapping[int, KeyringKey],
    engine: str,
    random_bytes: RandomBytes | None,
    root_key_id: int,
) -> int:
    """Generate a key whose ID clashes with nothing, add it to ``keys`` and return its ID."""
    while True:
        new_key = KeyringKey.generate(engine, random_bytes)
        if new_key.id != root_key_id and new_key.id not in keys:
            keys[new_key.id] = new_key
            return new_key.id
        new_key.zeroize()
        time.sleep(0.01)


def generate_nonce(random_bytes: RandomBytes | None, size: int) -> bytearray:
    data = (random_bytes or os.urandom)(size)
    if len(data) != size:
        raise KeyringError("unable to generate nonce")
    return bytearray(data)


def random_uint64(random_bytes: RandomBytes | None) -> int:
    data = (random_bytes or os.urandom)(_U64.size)
    if len(data) != _U64.size:
        raise KeyringError("unable to generate random number")
    return _U64.unpack(data)[0]