import pytest

from vaultring.errors import (
    AlreadyInitializedError,
    AlreadyUnlockedError,
    EncryptionKeyNotFoundError,
    EngineNotSupportedError,
    KeyringDataChangedError,
    KeyringError,
    LockedError,
    MoreKeysRequiredError,
    NotInitializedError,
)
from vaultring.keyring import Keyring
from vaultring.options import (
    AutoLockOptions,
    AutoUnlockOptions,
    InitializeOptions,
    ManualLockOptions,
    ManualUnlockOptions,
    RotateRootKeyOptions,
    UnlockOptions,
)
from vaultring.storage import StorageTx

PLAINTEXT_SAMPLE = b"hello world!!"


def auto_lock_encrypt(plaintext):
    return bytes((b + 1) & 0xFF for b in plaintext)


def auto_lock_decrypt(ciphertext):
    return bytes((b - 1) & 0xFF for b in ciphertext)


class MemoryStorage:
    def __init__(self):
        self.kv = {}

    def begin(self, read_only):
        return MemoryTx(self, read_only)


class MemoryTx(StorageTx):
    def __init__(self, storage, read_only):
        self.storage = storage
        self.read_only = read_only
        self.changes = {}

    def get(self, key):
        if key in self.changes:
            value = self.changes[key]
        else:
            value = self.storage.kv.get(key)
        return None if value is None else bytes(value)

    def put(self, key, value):
        if self.read_only:
            raise RuntimeError("read only transaction")
        self.changes[key] = bytes(value)

    def delete(self, key):
        self.changes[key] = None

    def commit(self):
        for key, value in self.changes.items():
            if value is None:
                self.storage.kv.pop(key, None)
            else:
                self.storage.kv[key] = value

    def rollback(self):
        self.changes.clear()


def sample(payload=b""):
    return PLAINTEXT_SAMPLE + payload


def auto_init(kr):
    return kr.initialize(
        InitializeOptions(engine="aes-gcm", auto_lock=AutoLockOptions(encrypt=auto_lock_encrypt))
    )


def auto_unlock_options(decrypt=auto_lock_decrypt):
    return UnlockOptions(auto_unlock=AutoUnlockOptions(decrypt=decrypt))


@pytest.fixture
def storage():
    return MemoryStorage()


def test_new_requires_transaction_initiator():
    with pytest.raises(ValueError):
        Keyring(None)


def test_encryption(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    first = kr.encrypt(sample(b"first"))
    kr.add_encryption_key("aes-gcm")
    second = kr.encrypt(sample(b"second"))
    assert first[1:5] != second[1:5]
    kr.destroy()

    kr = Keyring(storage.begin)
    kr.unlock(auto_unlock_options())
    assert kr.decrypt(first) == sample(b"first")
    assert kr.decrypt(second) == sample(b"second")
    kr.destroy()
    assert kr.is_locked()


def test_manual_lock(storage):
    kr = Keyring(storage.begin)
    result = kr.initialize(
        InitializeOptions(engine="aes-gcm", manual_lock=ManualLockOptions(threshold=2, shares=3))
    )
    shares = result.manual_lock.split_root_key
    assert len(shares) == 3
    encrypted = kr.encrypt(sample())

    kr.lock()
    assert kr.is_locked()

    with pytest.raises(KeyringError):
        kr.unlock(auto_unlock_options())

    with pytest.raises(MoreKeysRequiredError):
        kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=bytes(shares[2]))))
    assert kr.is_locked()

    kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=bytes(shares[0]))))
    assert not kr.is_locked()
    assert kr.decrypt(encrypted) == sample()
    kr.destroy()


def test_auto_lock(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    encrypted = kr.encrypt(sample())
    kr.lock()

    with pytest.raises(KeyringError, match="auto locking"):
        kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=bytes(16))))

    kr.unlock(auto_unlock_options())
    assert kr.decrypt(encrypted) == sample()
    kr.destroy()


def test_double_init(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    with pytest.raises(AlreadyInitializedError):
        auto_init(kr)
    kr.destroy()


def test_init_on_already_initialized_storage(storage):
    auto_init(Keyring(storage.begin))
    other = Keyring(storage.begin)
    with pytest.raises(AlreadyInitializedError):
        auto_init(other)
    assert other.is_locked()


def test_root_key_rotation(storage):
    seen = {}

    def capture(name):
        def decrypt(ciphertext):
            seen[name] = bytes(ciphertext)
            return auto_lock_decrypt(ciphertext)

        return decrypt

    kr = Keyring(storage.begin)
    auto_init(kr)
    first = kr.encrypt(sample(b"first"))
    kr.add_encryption_key("aes-gcm")
    second = kr.encrypt(sample(b"second"))
    kr.lock()

    kr.unlock(auto_unlock_options(capture("original")))
    kr.rotate_root_key(
        RotateRootKeyOptions(engine="aes-gcm", auto_lock=AutoLockOptions(encrypt=auto_lock_encrypt))
    )
    kr.destroy()

    kr = Keyring(storage.begin)
    kr.unlock(auto_unlock_options(capture("new")))
    assert seen["original"] != seen["new"]
    assert kr.decrypt(first) == sample(b"first")
    assert kr.decrypt(second) == sample(b"second")
    kr.destroy()


def test_rotate_from_auto_to_manual(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    encrypted = kr.encrypt(sample())
    result = kr.rotate_root_key(
        RotateRootKeyOptions(engine="aes-gcm", manual_lock=ManualLockOptions(threshold=2, shares=3))
    )
    shares = result.manual_lock.split_root_key
    assert len(shares) == 3
    kr.destroy()

    kr = Keyring(storage.begin)
    with pytest.raises(MoreKeysRequiredError):
        kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=bytes(shares[1]))))
    kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=bytes(shares[2]))))
    assert kr.decrypt(encrypted) == sample()


def test_rotate_requires_unlocked(storage):
    kr = Keyring(storage.begin)
    with pytest.raises(LockedError):
        kr.rotate_root_key(
            RotateRootKeyOptions(engine="aes-gcm", auto_lock=AutoLockOptions(encrypt=auto_lock_encrypt))
        )


def test_single_share_manual_lock(storage):
    kr = Keyring(storage.begin)
    result = kr.initialize(
        InitializeOptions(engine="aes-gcm", manual_lock=ManualLockOptions(threshold=1, shares=1))
    )
    encrypted = kr.encrypt(sample())
    kr.lock()
    kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=bytes(result.manual_lock.split_root_key[0]))))
    assert kr.decrypt(encrypted) == sample()


def test_unlock_not_initialized(storage):
    kr = Keyring(storage.begin)
    with pytest.raises(NotInitializedError):
        kr.unlock(auto_unlock_options())


def test_unlock_already_unlocked(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    with pytest.raises(AlreadyUnlockedError):
        kr.unlock(auto_unlock_options())


def test_cancel_unlock_discards_shares(storage):
    kr = Keyring(storage.begin)
    result = kr.initialize(
        InitializeOptions(engine="aes-gcm", manual_lock=ManualLockOptions(threshold=2, shares=3))
    )
    shares = [bytes(share) for share in result.manual_lock.split_root_key]
    kr.lock()
    with pytest.raises(MoreKeysRequiredError):
        kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=shares[0])))
    kr.cancel_unlock()
    with pytest.raises(MoreKeysRequiredError):
        kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=shares[1])))
    kr.unlock(UnlockOptions(manual_unlock=ManualUnlockOptions(key=shares[2])))
    assert not kr.is_locked()


def test_wrong_auto_unlock_fails(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    kr.lock()
    with pytest.raises(KeyringError):
        kr.unlock(auto_unlock_options(lambda ciphertext: bytes(ciphertext)))
    assert kr.is_locked()


def test_locked_operations_raise(storage):
    kr = Keyring(storage.begin)
    with pytest.raises(LockedError):
        kr.encrypt(b"data")
    with pytest.raises(LockedError):
        kr.decrypt(b"\x01\x00\x00\x00\x00payload")
    with pytest.raises(LockedError):
        kr.add_encryption_key("aes-gcm")
    with pytest.raises(LockedError):
        kr.status()


def test_decrypt_input_validation(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    with pytest.raises(ValueError, match="too short"):
        kr.decrypt(b"\x01\x00\x00\x00\x00")
    with pytest.raises(ValueError, match="version"):
        kr.decrypt(b"\x02\x00\x00\x00\x00payload")


def test_decrypt_unknown_key(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    encrypted = kr.encrypt(sample())
    key_id = int.from_bytes(encrypted[1:5], "little") ^ 1
    forged = encrypted[:1] + key_id.to_bytes(4, "little") + encrypted[5:]
    with pytest.raises(EncryptionKeyNotFoundError):
        kr.decrypt(forged)


def test_encrypted_layout(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    encrypted = kr.encrypt(sample())
    assert encrypted[0] == 1
    assert len(encrypted) > 5 + len(sample())


def test_add_unsupported_engine(storage):
    kr = Keyring(storage.begin)
    auto_init(kr)
    encrypted = kr.encrypt(sample())
    with pytest.raises(EngineNotSupportedError):
        kr.add_encryption_key("no-such-engine")
    assert kr.encrypt(sample())[1:5] == encrypted[1:5]


def test_status_detects_changes(storage):
    first = Keyring(storage.begin)
    auto_init(first)
    encrypted = first.encrypt(sample())

    second = Keyring(storage.begin)
    second.unlock(auto_unlock_options())
    second.add_encryption_key("aes-gcm")
    assert second.status() is None

    with pytest.raises(KeyringDataChangedError):
        first.status()
    with pytest.raises(KeyringDataChangedError):
        first.add_encryption_key("aes-gcm")
    assert first.decrypt(encrypted) == sample()
    assert second.decrypt(encrypted) == sample()


def test_initialize_invalid_options(storage):
    kr = Keyring(storage.begin)
    with pytest.raises(ValueError):
        kr.initialize(InitializeOptions(engine="aes-gcm"))
    with pytest.raises(EngineNotSupportedError):
        kr.initialize(
            InitializeOptions(engine="nope", auto_lock=AutoLockOptions(encrypt=auto_lock_encrypt))
        )
    assert storage.kv == {}