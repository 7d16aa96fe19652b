"""Custom exception hierarchy for the metadata client."""

from __future__ import annotations


class MetadataError(Exception):
    """Base exception for all client errors."""


class ConfigError(MetadataError):
    """Invalid or missing configuration."""


class TransportError(MetadataError):
    """Network failure or non-200 response from the metadata service."""

    def __init__(self, message: str, path: str, status_code: int | None = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class DecodeError(MetadataError):
    """Response body could not be decoded into the expected entity shape."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class NotFound(MetadataError):
    """An explicit lookup found no matching entity."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"could not find {kind} by {key}")
        self.kind = kind
        self.key = key
