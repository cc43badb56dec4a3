"""Secure storage and management of encryption keys protected by a root key."""

__version__ = "1.0.0"