"""Storage keys used by the keyring."""

from __future__ import annotations

PARAMETERS = "keyring:parameters"
ROOT_KEY = "keyring:root-key"
ROOT_KEY_HASH = "keyring:root-key-hash"
ROOT_KEY_NONCE = "keyring:root-key-nonce"
ENCRYPTION_KEY_PREFIX = "keyring:encryption-key-"
ACTIVE_ENCRYPTION_KEY_ID = "keyring:active-encryption-key-id"

_FIXED_PATHS = frozenset(
    {PARAMETERS, ROOT_KEY, ROOT_KEY_HASH, ROOT_KEY_NONCE, ACTIVE_ENCRYPTION_KEY_ID}
)


def is_keyring_path(path: str) -> bool:
    """Tell whether a storage key belongs to the keyring."""
    if path in _FIXED_PATHS:
        return True
    if path.startswith(ENCRYPTION_KEY_PREFIX):
        index = path[len(ENCRYPTION_KEY_PREFIX):]
        return bool(index) and index.isascii() and index.isdigit()
    return False


def encryption_key_path(index: int) -> str:
    """Storage key of the encryption key at the given 1-based slot."""
    return f"{ENCRYPTION_KEY_PREFIX}{index}"