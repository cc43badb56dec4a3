"""Cipher interface, the AES-GCM engine and the engine registry."""

from __future__ import annotations

import os
import struct
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import EngineNotSupportedError, ExtendedError, KeyringError

RandomBytes = Callable[[int], bytes]

AES_KEY_LEN = 32
_NONCE_SIZE = 12
_NONCE_HEADER = struct.Struct("<H")


class Cipher(ABC):
    """Minimal interface every cipher implements."""

    @abstractmethod
    def key_len(self) -> int:
        """Length of the key used by the cipher."""

    @abstractmethod
    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt the plaintext."""

    @abstractmethod
    def decrypt(self, ciphertext: bytes) -> bytearray:
        """Decrypt the ciphertext."""


def _read_random(random_bytes: RandomBytes | None, size: int, what: str) -> bytes:
    data = (random_bytes or os.urandom)(size)
    if len(data) != size:
        raise KeyringError(f"unable to generate aead {what}")
    return data


def generate_aes_gcm_key(random_bytes: RandomBytes | None = None) -> bytearray:
    """Generate a new 256-bit AES-GCM key."""
    return bytearray(_read_random(random_bytes, AES_KEY_LEN, "key"))


class AesGcmCipher(Cipher):
    """AES-256-GCM; ciphertexts are laid out as nonce size, nonce, sealed data."""

    def __init__(self, key: bytes, random_bytes: RandomBytes | None = None) -> None:
        if len(key) != AES_KEY_LEN:
            raise ValueError("key must be 32 bytes long")
        try:
            self._aead = AESGCM(bytes(key))
        except (ValueError, TypeError) as exc:
            raise ExtendedError("failed to create cipher", exc) from exc
        self._random = random_bytes or os.urandom

    def key_len(self) -> int:
        return AES_KEY_LEN

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = _read_random(self._random, _NONCE_SIZE, "nonce")
        sealed = self._aead.encrypt(nonce, bytes(plaintext), None)
        return _NONCE_HEADER.pack(_NONCE_SIZE) + nonce + sealed

    def decrypt(self, ciphertext: bytes) -> bytearray:
        if len(ciphertext) < _NONCE_HEADER.size:
            raise KeyringError("empty or invalid ciphertext")
        (nonce_size,) = _NONCE_HEADER.unpack_from(ciphertext)
        start = _NONCE_HEADER.size + nonce_size
        if len(ciphertext) <= start:
            raise KeyringError("empty or invalid ciphertext")
        if nonce_size != _NONCE_SIZE:
            raise KeyringError("incorrect nonce length")
        nonce = bytes(ciphertext[_NONCE_HEADER.size:start])
        try:
            plaintext = self._aead.decrypt(nonce, bytes(ciphertext[start:]), None)
        except InvalidTag as exc:
            raise KeyringError("message authentication failed") from exc
        return bytearray(plaintext)


GenerateKeyFunc = Callable[[RandomBytes | None], bytearray]
NewFromKeyFunc = Callable[[bytes, RandomBytes | None], Cipher]


@dataclass(frozen=True)
class _Engine:
    generate_key: GenerateKeyFunc
    new_from_key: NewFromKeyFunc


_ENGINES: dict[str, _Engine] = {
    "aes-gcm": _Engine(generate_key=generate_aes_gcm_key, new_from_key=AesGcmCipher),
}


def supported_engines() -> list[str]:
    """Names of the registered encryption engines."""
    return list(_ENGINES)


def is_engine_supported(engine: str) -> bool:
    return engine in _ENGINES


def register_engine(engine: str, generate_key: GenerateKeyFunc, new_from_key: NewFromKeyFunc) -> None:
    """Register a custom encryption engine."""
    if not engine:
        raise ValueError("engine name cannot be empty")
    if generate_key is None or new_from_key is None:
        raise ValueError("generate_key and new_from_key cannot be None")
    if engine in _ENGINES:
        raise ValueError("engine already exists")
    _ENGINES[engine] = _Engine(generate_key=generate_key, new_from_key=new_from_key)


def _engine(engine: str) -> _Engine:
    try:
        return _ENGINES[engine]
    except KeyError:
        raise EngineNotSupportedError() from None


def generate_key(engine: str, random_bytes: RandomBytes | None = None) -> bytearray:
    """Generate a new key for the given engine."""
    return _engine(engine).generate_key(random_bytes)


def new_from_key(engine: str, key: bytes, random_bytes: RandomBytes | None = None) -> Cipher:
    """Create a cipher of the given engine from a key."""
    return _engine(engine).new_from_key(key, random_bytes)