"""Client for the infrastructure metadata service with version-change watching."""

from __future__ import annotations

from .client import MetadataClient, connect
from .exceptions import ConfigError, DecodeError, MetadataError, NotFound, TransportError
from .models import Container, Environment, Host, Network, Region, Service, Stack, to_dict, unquote
from .watcher import VersionWatcher

__all__ = [
    "ConfigError",
    "Container",
    "DecodeError",
    "Environment",
    "Host",
    "MetadataClient",
    "MetadataError",
    "Network",
    "NotFound",
    "Region",
    "Service",
    "Stack",
    "TransportError",
    "VersionWatcher",
    "to_dict",
    "connect",
    "unquote",
]
