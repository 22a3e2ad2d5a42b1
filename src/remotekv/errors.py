"""Structured error types for remotekv."""

from __future__ import annotations


class RemoteKVError(Exception):
    """Base error for all remotekv errors."""


class NotFoundError(RemoteKVError):
    """Raised by a backend when the requested blob does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Blob '{name}' does not exist")


class VersionConflictError(RemoteKVError):
    """Raised when a compare-and-swap write finds a different current version."""

    def __init__(self, name: str, expected_version: str | None, detail: str = "") -> None:
        self.name = name
        self.expected_version = expected_version
        expected = expected_version if expected_version is not None else "<absent>"
        message = f"Version conflict writing '{name}' (expected {expected})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConflictExceededError(RemoteKVError):
    """Raised when conflict retries are exhausted for a document update."""

    def __init__(self, key: str, attempts: int) -> None:
        self.key = key
        self.attempts = attempts
        super().__init__(f"Update of '{key}' still conflicting after {attempts} attempts")


class StorePermissionError(RemoteKVError, PermissionError):
    """Raised when the caller may not write to the store."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class BackendError(RemoteKVError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} > {detail}")


class InvalidStoreURIError(BackendError):
    """Raised when a store URI cannot be resolved to a backend."""

    def __init__(self, uri: str, detail: str) -> None:
        self.uri = uri
        super().__init__("parse_store_uri", f"{detail}: '{uri}'")


class LockTimeoutError(RemoteKVError):
    """Raised when a lock could not be acquired within the requested timeout."""

    def __init__(self, resource: str, timeout_s: float) -> None:
        self.resource = resource
        self.timeout_s = timeout_s
        super().__init__(f"Could not acquire lock on '{resource}' within {timeout_s:g}s")
