"""Options and results of keyring operations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from . import ciphers
from .errors import EngineNotSupportedError

EncryptFunc = Callable[[bytes], bytes]
DecryptFunc = Callable[[bytes], bytes]


@dataclass
class ManualLockOptions:
    """Split the root key into ``shares`` pieces, ``threshold`` of which unlock it."""

    threshold: int
    shares: int


@dataclass
class AutoLockOptions:
    """Protect the root key with an external encryption service."""

    encrypt: EncryptFunc | None


def _check_lock(manual: ManualLockOptions | None, auto: AutoLockOptions | None) -> None:
    if manual is not None and auto is not None:
        raise ValueError("use either ManualLock or AutoLock, not both")
    if manual is None and auto is not None and auto.encrypt is None:
        raise ValueError("auto-lock encrypt function is None")


@dataclass
class InitializeOptions:
    """Options for initializing a keyring."""

    engine: str
    root_key_engine: str = ""
    manual_lock: ManualLockOptions | None = None
    auto_lock: AutoLockOptions | None = None

    @property
    def root_engine(self) -> str:
        """Engine of the root key; that of the encryption keys when not set."""
        return self.root_key_engine or self.engine

    def validate(self) -> None:
        if not ciphers.is_engine_supported(self.engine):
            raise EngineNotSupportedError()
        if self.root_key_engine and not ciphers.is_engine_supported(self.root_key_engine):
            raise EngineNotSupportedError()
        _check_lock(self.manual_lock, self.auto_lock)
        if self.manual_lock is not None:
            if not 1 <= self.manual_lock.shares <= 255:
                raise ValueError("invalid shares parameter")
            if not 1 <= self.manual_lock.threshold <= self.manual_lock.shares:
                raise ValueError("invalid threshold parameter")
        elif self.auto_lock is None:
            raise ValueError("neither ManualLock nor AutoLock was specified")


@dataclass
class ManualLockResult:
    split_root_key: list[bytearray] = field(default_factory=list)


@dataclass
class InitializeResult:
    manual_lock: ManualLockResult = field(default_factory=ManualLockResult)


@dataclass
class ManualUnlockOptions:
    """One of the split root key shares."""

    key: bytes


@dataclass
class AutoUnlockOptions:
    """Decrypts the root key through the external encryption service."""

    decrypt: DecryptFunc | None


@dataclass
class UnlockOptions:
    manual_unlock: ManualUnlockOptions | None = None
    auto_unlock: AutoUnlockOptions | None = None

    def validate(self) -> None:
        if self.manual_unlock is not None:
            if self.auto_unlock is not None:
                raise ValueError("use either ManualUnlock or AutoUnlock, not both")
            if not self.manual_unlock.key:
                raise ValueError("invalid key parameter")
        elif self.auto_unlock is not None:
            if self.auto_unlock.decrypt is None:
                raise ValueError("auto-unlock decrypt function is None")
        else:
            raise ValueError("neither ManualUnlock nor AutoUnlock was specified")


@dataclass
class RotateRootKeyOptions:
    """Options for replacing the root key, possibly switching the lock method."""

    engine: str
    manual_lock: ManualLockOptions | None = None
    auto_lock: AutoLockOptions | None = None

    def validate(self) -> None:
        if not ciphers.is_engine_supported(self.engine):
            raise EngineNotSupportedError()
        _check_lock(self.manual_lock, self.auto_lock)
        if self.manual_lock is not None:
            lock = self.manual_lock
            if not 1 <= lock.shares <= 255 or not 1 <= lock.threshold <= lock.shares:
                raise ValueError("invalid shares or threshold parameter")
        elif self.auto_lock is None:
            raise ValueError("invalid options")


@dataclass
class RotateRootKeyResult:
    manual_lock: ManualLockResult = field(default_factory=ManualLockResult)