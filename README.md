# vaultring

`vaultring` keeps a set of encryption keys in a transactional key/value storage that
you supply. A root key protects those encryption keys. The root key is never stored in
the clear. It is protected in one of two ways:

* **Manual lock**: the root key is split into Shamir shares. Any `threshold` of the
  `shares` unlock the keyring.
* **Auto lock**: the root key is encrypted by a function you provide, for example a
  call to a hardware security module. A matching decrypt function unlocks it again.

Data is encrypted with the active encryption key. Data encrypted with older keys can
still be decrypted after you add new keys or rotate the root key.

## Installation

```
pip install vaultring
```

## Storage

The package ships no storage backend. Give the keyring a callable
`begin_transaction(read_only)` that returns an object with the `StorageTx` methods from
`vaultring.storage`:

* `get(key)` returns the stored bytes, or `None` when the key is missing.
* `put(key, value)` stores a value.
* `delete(key)` removes a key. A missing key is not an error.
* `commit()` and `rollback()` end the transaction.

All of the keyring's entries live under the `keyring:` prefix.
`vaultring.storage.is_keyring_key(key)` tells you whether a storage key belongs to the
keyring.

## Example

```python
from vaultring.keyring import Keyring
from vaultring.options import (
    InitializeOptions, ManualLockOptions, ManualUnlockOptions, UnlockOptions,
)

keyring = Keyring(my_storage.begin_transaction)

# Manual lock: the root key is split into 3 shares and any 2 of them unlock it.
result = keyring.initialize(InitializeOptions(
    engine="aes-gcm",
    manual_lock=ManualLockOptions(threshold=2, shares=3),
))
shares = result.manual_lock.split_root_key

ciphertext = keyring.encrypt(b"hello world!!")

keyring.lock()
first_share = ManualUnlockOptions(shares[2])
second_share = ManualUnlockOptions(shares[0])
# The first share raises MoreKeysRequiredError. The second share unlocks the keyring.
try:
    keyring.unlock(UnlockOptions(manual_unlock=first_share))
except MoreKeysRequiredError:
    keyring.unlock(UnlockOptions(manual_unlock=second_share))

assert keyring.decrypt(ciphertext) == b"hello world!!"
```

(`MoreKeysRequiredError` comes from `vaultring.errors`.)

For auto lock, pass `AutoLockOptions(encrypt=...)` when you initialize the keyring. To
unlock it, pass `AutoUnlockOptions(decrypt=...)`. Both functions take and return bytes.

## Operations

* `initialize`: creates a new keyring. The keyring is unlocked afterwards.
* `unlock`: unlocks the keyring. For a manual lock, call it once per share.
* `cancel_unlock`: drops any shares collected so far.
* `lock`: locks the keyring.
* `destroy`: locks the keyring and clears all in-memory state.
* `is_locked`: reports whether the keyring is locked.
* `status`: raises `LockedError` when the keyring is locked. It raises
  `KeyringDataChangedError` when another instance has changed the stored keyring data.
* `add_encryption_key(engine)`: adds a key, and new data is encrypted with it.
* `rotate_root_key(options)`: replaces the root key. It can also switch between manual
  and auto lock.
* `encrypt` and `decrypt`: encrypt and decrypt data with the managed keys.

Errors derive from `vaultring.errors.KeyringError`. Invalid options raise `ValueError`.

The built-in cipher engine is `"aes-gcm"`. To add your own engine, call
`vaultring.ciphers.register_engine`.

## What it does not do

`vaultring` is a library only. It has no command-line tool and no server, and it does
not store anything itself: persistence is entirely up to the transaction object you
provide.