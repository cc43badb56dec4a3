"""Keyring parameters and their stored form."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any

from .errors import InvalidStoredDataError, KeyringError, NotFoundError

PARAMETERS_VERSION = 1

_VERSION = struct.Struct("<H")
_V1 = struct.Struct("<HQIBBB")


@dataclass
class KeyringParameters:
    """Settings shared by every instance working on the same storage."""

    unique_id: int = 0
    revision: int = 0  # incremented on every change
    using_auto_unlock: bool = False
    shares: int = 0
    threshold: int = 0

    def serialize(self) -> bytes:
        return _V1.pack(
            PARAMETERS_VERSION,
            self.unique_id,
            self.revision,
            1 if self.using_auto_unlock else 0,
            self.shares,
            self.threshold,
        )

    @classmethod
    def deserialize(cls, buf: bytes) -> KeyringParameters:
        if len(buf) <= _VERSION.size:
            raise InvalidStoredDataError()
        (version,) = _VERSION.unpack_from(buf)
        if version != PARAMETERS_VERSION:
            raise KeyringError("unsupported keyring parameters version")
        if len(buf) != _V1.size:
            raise InvalidStoredDataError()
        _, unique_id, revision, auto_unlock, shares, threshold = _V1.unpack(bytes(buf))
        return cls(
            unique_id=unique_id,
            revision=revision,
            using_auto_unlock=auto_unlock == 1,
            shares=shares,
            threshold=threshold,
        )

    @classmethod
    def load(cls, tx: Any, key: str) -> KeyringParameters:
        """Read parameters from a storage transaction; NotFoundError if absent."""
        encoded = tx.get(key)
        if encoded is None:
            raise NotFoundError()
        return cls.deserialize(encoded)

    def save(self, tx: Any, key: str) -> None:
        tx.put(key, self.serialize())