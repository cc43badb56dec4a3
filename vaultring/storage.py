"""Storage transactions and the stored layout of the keyring's keys."""

from __future__ import annotations

import itertools
import struct
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager

from .errors import InvalidStoredDataError, KeyringDataChangedError, KeyringError, NotFoundError
from .key import ID_SIZE, KeyringKey, RandomBytes
from .memory import zeroize, zeroize_all
from .params import KeyringParameters
from .paths import ACTIVE_ENCRYPTION_KEY_ID, PARAMETERS, encryption_key_path, is_keyring_path

_KEY_ID = struct.Struct("<I")


class StorageTx(ABC):
    """A transaction on the storage that holds the keyring data."""

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Value stored under ``key``, or None when absent.

        Must return a copy if the underlying storage reuses its buffers.
        """

    @abstractmethod
    def put(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``; keep a copy if it is held until commit."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""

    @abstractmethod
    def commit(self) -> None:
        """Save every change into the storage."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard pending changes."""


BeginTransaction = Callable[[bool], StorageTx]


def is_keyring_key(key: str) -> bool:
    """Tell whether a storage key is one the keyring uses."""
    return is_keyring_path(key)


@contextmanager
def transaction(begin: BeginTransaction, read_only: bool) -> Iterator[StorageTx]:
    """Run a block within a transaction: commit on success, roll back on any error."""
    tx = begin(read_only)
    try:
        yield tx
        tx.commit()
    except BaseException:
        tx.rollback()
        raise


def get_non_null_value(tx: StorageTx, key: str) -> bytes:
    """Value under ``key``; InvalidStoredDataError when it is missing or empty."""
    value = tx.get(key)
    if not value:
        raise InvalidStoredDataError()
    return value


def read_encryption_keys(tx: StorageTx) -> tuple[list[bytes], int]:
    """Read the encrypted encryption keys and the active key's ID."""
    encrypted_keys: list[bytes] = []
    try:
        for index in itertools.count(1):
            encrypted_key = tx.get(encryption_key_path(index))
            if encrypted_key is None:
                break
            encrypted_keys.append(encrypted_key)

        if not encrypted_keys:
            raise InvalidStoredDataError()

        active_id_bytes = tx.get(ACTIVE_ENCRYPTION_KEY_ID)
        if active_id_bytes is None or len(active_id_bytes) != ID_SIZE:
            raise KeyringError("invalid active encryption key ID")
        (active_id,) = _KEY_ID.unpack(bytes(active_id_bytes))
    except BaseException:
        zeroize_all(encrypted_keys)
        raise
    return encrypted_keys, active_id


def decrypt_encryption_keys(
    encrypted_keys: Sequence[bytes],
    root_key: KeyringKey,
    random_bytes: RandomBytes | None,
) -> dict[int, KeyringKey]:
    """Decrypt stored encryption keys with the root key, keyed by their IDs."""
    cipher = root_key.get_cipher()
    keys: dict[int, KeyringKey] = {}
    try:
        for encrypted_key in encrypted_keys:
            decrypted = cipher.decrypt(encrypted_key)
            try:
                keyring_key = KeyringKey.deserialize(bytes(decrypted), random_bytes)
            finally:
                zeroize(decrypted)
            if keyring_key.id == root_key.id or keyring_key.id in keys:
                key_id = keyring_key.id
                keyring_key.zeroize()
                raise KeyringError(f"duplicated encryption key with ID 0x{key_id:X}")
            keys[keyring_key.id] = keyring_key
    except BaseException:
        for keyring_key in keys.values():
            keyring_key.zeroize()
        raise
    return keys


def _write_active_key_id(tx: StorageTx, key_id: int) -> None:
    tx.put(ACTIVE_ENCRYPTION_KEY_ID, _KEY_ID.pack(key_id))


def write_encryption_keys(
    tx: StorageTx,
    root_key: KeyringKey,
    encryption_keys: Mapping[int, KeyringKey],
    active_key_id: int,
) -> None:
    """Store every encryption key encrypted with the root key, plus the active key's ID."""
    cipher = root_key.get_cipher()
    count = 0
    for count, keyring_key in enumerate(encryption_keys.values(), start=1):
        tx.put(encryption_key_path(count), cipher.encrypt(keyring_key.serialize()))
    tx.delete(encryption_key_path(count + 1))
    _write_active_key_id(tx, active_key_id)


def write_new_encryption_key(
    tx: StorageTx,
    root_key: KeyringKey,
    encryption_keys: Mapping[int, KeyringKey],
    new_key_id: int,
) -> None:
    """Store the newest encryption key in the last slot and make it the active one."""
    cipher = root_key.get_cipher()
    count = len(encryption_keys)
    tx.put(encryption_key_path(count), cipher.encrypt(encryption_keys[new_key_id].serialize()))
    tx.delete(encryption_key_path(count + 1))
    _write_active_key_id(tx, new_key_id)


def check_storage_initialized(
    tx: StorageTx,
    unique_id: int | None = None,
    revision: int | None = None,
) -> KeyringParameters:
    """Load the stored parameters and check they still match the expected ones.

    Raises NotFoundError when the storage holds no keyring and nothing was
    expected, KeyringDataChangedError when it differs from what was expected.
    """
    try:
        params = KeyringParameters.load(tx, PARAMETERS)
    except NotFoundError:
        if unique_id is not None or revision is not None:
            raise KeyringDataChangedError() from None
        raise
    if unique_id is not None and revision is not None:
        if params.unique_id != unique_id or params.revision != revision:
            raise KeyringDataChangedError()
    return params