"""The keyring: secure storage and management of encryption keys."""

from __future__ import annotations

import struct
import threading
import time
from collections.abc import Mapping

from . import shamir
from .errors import (
    AlreadyInitializedError,
    AlreadyUnlockedError,
    EncryptionKeyNotFoundError,
    KeyringError,
    LockedError,
    MoreKeysRequiredError,
    NotFoundError,
    NotInitializedError,
    UnlockFailedError,
)
from .key import ID_SIZE, KeyringKey, RandomBytes, add_new_encryption_key, generate_nonce, random_uint64
from .memory import zeroize, zeroize_all
from .options import (
    InitializeOptions,
    InitializeResult,
    ManualLockOptions,
    RotateRootKeyOptions,
    RotateRootKeyResult,
    UnlockOptions,
)
from .params import KeyringParameters
from .paths import PARAMETERS, ROOT_KEY, ROOT_KEY_HASH, ROOT_KEY_NONCE
from .storage import (
    BeginTransaction,
    StorageTx,
    check_storage_initialized,
    decrypt_encryption_keys,
    get_non_null_value,
    read_encryption_keys,
    transaction,
    write_encryption_keys,
    write_new_encryption_key,
)

DATA_VERSION = 1
ROOT_KEY_NONCE_SIZE = 32

_KEY_ID = struct.Struct("<I")
_HEADER_SIZE = 1 + ID_SIZE
_REVISION_MASK = 0xFFFFFFFF


def _zeroize_keys(keys: Mapping[int, KeyringKey]) -> None:
    for keyring_key in keys.values():
        keyring_key.zeroize()


def _lock_parameters(params: KeyringParameters, manual_lock: ManualLockOptions | None) -> None:
    if manual_lock is not None:
        params.shares = manual_lock.shares
        params.threshold = manual_lock.threshold
    else:
        params.using_auto_unlock = True


class Keyring:
    """Keeps a root key and the encryption keys it protects in a transactional storage."""

    def __init__(self, begin_transaction: BeginTransaction, random_bytes: RandomBytes | None = None) -> None:
        if begin_transaction is None:
            raise ValueError("invalid storage transaction initiator")
        self._begin = begin_transaction
        self._random = random_bytes
        self._mutex = threading.Lock()

        self._params = KeyringParameters()
        self._unlock_keys: list[bytearray] | None = None
        self._unlock_params = KeyringParameters()

        self._root_key: KeyringKey | None = None
        self._encryption_keys: dict[int, KeyringKey] = {}
        self._active_key_id = 0

    # -- lifecycle ---------------------------------------------------------

    def destroy(self) -> None:
        """Wipe every key held in memory and lock the keyring."""
        with self._mutex:
            self._do_lock()

    def status(self) -> None:
        """Check the keyring is unlocked and the storage has not been changed elsewhere.

        Raises LockedError or KeyringDataChangedError.
        """
        with self._mutex:
            if self._root_key is None:
                raise LockedError()
            with transaction(self._begin, True) as tx:
                check_storage_initialized(tx, self._params.unique_id, self._params.revision)

    def initialize(self, options: InitializeOptions) -> InitializeResult:
        """Initialize an empty storage. On success the keyring stays unlocked."""
        options.validate()

        result = InitializeResult()
        root_key: KeyringKey | None = None
        encryption_keys: dict[int, KeyringKey] = {}
        encrypted_root_key = None
        nonce = None
        encrypted_hash = None
        succeeded = False
        try:
            with self._mutex:
                if self._root_key is not None:
                    raise AlreadyInitializedError()

                root_key = KeyringKey.generate(options.root_engine, self._random)
                if options.manual_lock is not None:
                    result.manual_lock.split_root_key = root_key.split(
                        options.manual_lock.shares, options.manual_lock.threshold
                    )
                else:
                    encrypted_root_key = options.auto_lock.encrypt(root_key.serialize())

                nonce = generate_nonce(self._random, ROOT_KEY_NONCE_SIZE)
                encrypted_hash = root_key.encrypted_hash(nonce)

                active_key_id = add_new_encryption_key(
                    encryption_keys, options.engine, self._random, root_key.id
                )

                params = KeyringParameters(unique_id=random_uint64(self._random), revision=1)
                _lock_parameters(params, options.manual_lock)

                with transaction(self._begin, False) as tx:
                    try:
                        check_storage_initialized(tx)
                    except NotFoundError:
                        pass
                    else:
                        raise AlreadyInitializedError()
                    self._write_root_material(
                        tx,
                        params,
                        encrypted_root_key,
                        encrypted_hash,
                        nonce,
                        root_key,
                        encryption_keys,
                        active_key_id,
                    )

                self._params = params
                self._root_key = root_key
                self._encryption_keys = encryption_keys
                self._active_key_id = active_key_id
                succeeded = True
                return result
        finally:
            zeroize(encrypted_root_key)
            zeroize(encrypted_hash)
            zeroize(nonce)
            if not succeeded:
                if root_key is not None:
                    root_key.zeroize()
                _zeroize_keys(encryption_keys)
                zeroize_all(result.manual_lock.split_root_key)

    def unlock(self, options: UnlockOptions) -> None:
        """Unlock the keyring.

        With manual locking each call adds one share; MoreKeysRequiredError is
        raised until enough shares were given.
        """
        options.validate()

        root_key: KeyringKey | None = None
        encryption_keys: dict[int, KeyringKey] = {}
        merged_key = None
        decrypted_root_key = None
        encrypted_keys: list[bytes] = []
        succeeded = False
        try:
            with self._mutex:
                reset_unlock = True
                try:
                    if self._root_key is not None:
                        raise AlreadyUnlockedError()

                    if self._unlock_keys is None:
                        try:
                            with transaction(self._begin, True) as tx:
                                self._unlock_params = KeyringParameters.load(tx, PARAMETERS)
                        except NotFoundError:
                            raise NotInitializedError() from None
                        self._unlock_keys = []

                    params = self._unlock_params
                    if not params.using_auto_unlock:
                        if options.manual_unlock is None:
                            raise KeyringError("this keyring uses manual locking")
                    elif options.auto_unlock is None:
                        raise KeyringError("this keyring uses auto locking")

                    if not params.using_auto_unlock:
                        self._unlock_keys.append(bytearray(options.manual_unlock.key))
                        if len(self._unlock_keys) < params.threshold:
                            reset_unlock = False
                            raise MoreKeysRequiredError()
                        merged_key = shamir.combine(self._unlock_keys)

                    encrypted_root_key = None
                    with transaction(self._begin, True) as tx:
                        check_storage_initialized(tx, params.unique_id, params.revision)
                        if options.auto_unlock is not None:
                            encrypted_root_key = get_non_null_value(tx, ROOT_KEY)
                        encrypted_hash = get_non_null_value(tx, ROOT_KEY_HASH)
                        nonce = get_non_null_value(tx, ROOT_KEY_NONCE)
                        encrypted_keys, active_key_id = read_encryption_keys(tx)

                    if not params.using_auto_unlock:
                        root_key = KeyringKey.deserialize(bytes(merged_key), self._random)
                    else:
                        decrypted_root_key = options.auto_unlock.decrypt(encrypted_root_key)
                        root_key = KeyringKey.deserialize(bytes(decrypted_root_key), self._random)

                    if not root_key.validate_encrypted_hash(encrypted_hash, nonce):
                        raise UnlockFailedError()

                    encryption_keys = decrypt_encryption_keys(encrypted_keys, root_key, self._random)
                    if active_key_id not in encryption_keys:
                        raise KeyringError(
                            f"active encryption key with ID 0x{active_key_id:X} not found"
                        )

                    self._params = params
                    self._root_key = root_key
                    self._encryption_keys = encryption_keys
                    self._active_key_id = active_key_id
                    succeeded = True
                finally:
                    if reset_unlock:
                        self._do_cancel_unlock()
        finally:
            zeroize(merged_key)
            zeroize(decrypted_root_key)
            zeroize_all(encrypted_keys)
            if not succeeded:
                if root_key is not None:
                    root_key.zeroize()
                _zeroize_keys(encryption_keys)

    def cancel_unlock(self) -> None:
        """Abandon an unlock that is waiting for more shares."""
        with self._mutex:
            self._do_cancel_unlock()

    def lock(self) -> None:
        """Wipe the keys from memory until the keyring is unlocked again."""
        with self._mutex:
            self._do_lock()

    def is_locked(self) -> bool:
        with self._mutex:
            return self._root_key is None

    # -- key management ----------------------------------------------------

    def rotate_root_key(self, options: RotateRootKeyOptions) -> RotateRootKeyResult:
        """Replace the root key, optionally switching between manual and auto locking."""
        options.validate()

        result = RotateRootKeyResult()
        new_root_key: KeyringKey | None = None
        encrypted_root_key = None
        nonce = None
        encrypted_hash = None
        succeeded = False
        try:
            with self._mutex:
                if self._root_key is None:
                    raise LockedError()

                while True:
                    new_root_key = KeyringKey.generate(options.engine, self._random)
                    if new_root_key.id not in self._encryption_keys:
                        break
                    new_root_key.zeroize()
                    time.sleep(0.01)

                if options.manual_lock is not None:
                    result.manual_lock.split_root_key = new_root_key.split(
                        options.manual_lock.shares, options.manual_lock.threshold
                    )
                else:
                    encrypted_root_key = options.auto_lock.encrypt(new_root_key.serialize())

                nonce = generate_nonce(self._random, ROOT_KEY_NONCE_SIZE)
                encrypted_hash = new_root_key.encrypted_hash(nonce)

                new_params = KeyringParameters(
                    unique_id=self._params.unique_id,
                    revision=(self._params.revision + 1) & _REVISION_MASK,
                )
                _lock_parameters(new_params, options.manual_lock)

                with transaction(self._begin, False) as tx:
                    check_storage_initialized(tx, self._params.unique_id, self._params.revision)
                    self._write_root_material(
                        tx,
                        new_params,
                        encrypted_root_key,
                        encrypted_hash,
                        nonce,
                        new_root_key,
                        self._encryption_keys,
                        self._active_key_id,
                    )

                self._params = new_params
                self._root_key.zeroize()
                self._root_key = new_root_key
                succeeded = True
                return result
        finally:
            zeroize(encrypted_root_key)
            zeroize(encrypted_hash)
            zeroize(nonce)
            if not succeeded:
                if new_root_key is not None:
                    new_root_key.zeroize()
                zeroize_all(result.manual_lock.split_root_key)

    def add_encryption_key(self, engine: str) -> None:
        """Add an encryption key and make it the one used by later encryptions."""
        with self._mutex:
            if self._root_key is None:
                raise LockedError()

            new_key_id = add_new_encryption_key(
                self._encryption_keys, engine, self._random, self._root_key.id
            )
            previous_revision = self._params.revision
            self._params.revision = (previous_revision + 1) & _REVISION_MASK
            try:
                with transaction(self._begin, False) as tx:
                    check_storage_initialized(tx, self._params.unique_id, previous_revision)
                    self._params.save(tx, PARAMETERS)
                    write_new_encryption_key(tx, self._root_key, self._encryption_keys, new_key_id)
            except BaseException:
                self._encryption_keys.pop(new_key_id).zeroize()
                self._params.revision = previous_revision
                raise
            self._active_key_id = new_key_id

    # -- data --------------------------------------------------------------

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt with the active encryption key."""
        with self._mutex:
            if self._root_key is None:
                raise LockedError()
            cipher = self._encryption_keys[self._active_key_id].get_cipher()
            ciphertext = cipher.encrypt(plaintext)
            return bytes([DATA_VERSION]) + _KEY_ID.pack(self._active_key_id) + bytes(ciphertext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt data produced by :meth:`encrypt` with any known encryption key."""
        if len(ciphertext) <= _HEADER_SIZE:
            raise ValueError("ciphertext too short")
        if ciphertext[0] != DATA_VERSION:
            raise ValueError("unsupported ciphertext version")
        (key_id,) = _KEY_ID.unpack(bytes(ciphertext[1:_HEADER_SIZE]))

        with self._mutex:
            if self._root_key is None:
                raise LockedError()
            encryption_key = self._encryption_keys.get(key_id)
            if encryption_key is None:
                raise EncryptionKeyNotFoundError()
            cipher = encryption_key.get_cipher()
            return bytes(cipher.decrypt(bytes(ciphertext[_HEADER_SIZE:])))

    # -- internals ---------------------------------------------------------

    def _write_root_material(
        self,
        tx: StorageTx,
        params: KeyringParameters,
        encrypted_root_key: bytes | None,
        encrypted_hash: bytes,
        nonce: bytes,
        root_key: KeyringKey,
        encryption_keys: Mapping[int, KeyringKey],
        active_key_id: int,
    ) -> None:
        params.save(tx, PARAMETERS)
        if params.using_auto_unlock:
            tx.put(ROOT_KEY, bytes(encrypted_root_key))
        else:
            tx.delete(ROOT_KEY)
        tx.put(ROOT_KEY_HASH, bytes(encrypted_hash))
        tx.put(ROOT_KEY_NONCE, bytes(nonce))
        write_encryption_keys(tx, root_key, encryption_keys, active_key_id)

    def _do_cancel_unlock(self) -> None:
        self._unlock_params = KeyringParameters()
        zeroize_all(self._unlock_keys)
        self._unlock_keys = None

    def _do_lock(self) -> None:
        self._do_cancel_unlock()
        if self._root_key is not None:
            self._root_key.zeroize()
            self._root_key = None
        _zeroize_keys(self._encryption_keys)
        self._encryption_keys = {}
        self._active_key_id = 0
        self._params = KeyringParameters()