"""Exceptions raised by the keyring."""

from __future__ import annotations


class KeyringError(Exception):
    """Base class for every error raised by the keyring."""

    default_message = "keyring error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class AlreadyInitializedError(KeyringError):
    """The keyring is already initialized. Usually not fatal."""

    default_message = "already initialized"


class MoreKeysRequiredError(KeyringError):
    """More split keys must be supplied before the keyring can be unlocked."""

    default_message = "more keys required"


class AlreadyUnlockedError(KeyringError):
    """The keyring is already unlocked."""

    default_message = "already unlocked"


class NotInitializedError(KeyringError):
    default_message = "not initialized"


class LockedError(KeyringError):
    default_message = "locked"


class EncryptionKeyNotFoundError(KeyringError):
    default_message = "encryption key not found"


class InvalidStoredDataError(KeyringError):
    default_message = "invalid stored data"


class NotFoundError(KeyringError):
    default_message = "not found"


class UnlockFailedError(KeyringError):
    default_message = "unlock failed"


class KeyringDataChangedError(KeyringError):
    """Another instance changed the keyring data in the shared storage."""

    default_message = "keyring data has changed"


class EngineNotSupportedError(KeyringError):
    default_message = "engine not supported"


class ExtendedError(KeyringError):
    """An error carrying a message of its own plus the error that caused it."""

    def __init__(self, message: str, cause: BaseException | None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        err = self.cause
        while err is not None:
            if isinstance(err, ExtendedError):
                parts.append(f" [err={err.message}]")
                err = err.cause
            else:
                parts.append(f" [err={err}]")
                err = err.__cause__
        return "".join(parts)