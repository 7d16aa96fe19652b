"""Entity records returned by the metadata service and the JSON decoder for them."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from types import MappingProxyType
from typing import Any, TypeVar

from .exceptions import DecodeError

T = TypeVar("T")


# ── Field readers ───────────────────────────────────────────────────
# JSON null and missing keys both decode to the field's zero value.


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"field '{key}' must be a string, got {type(value).__name__}")
    return value


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"field '{key}' must be an integer, got {type(value).__name__}")
    return value


def _bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise DecodeError(f"field '{key}' must be a boolean, got {type(value).__name__}")
    return value


def _strs(data: dict[str, Any], key: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise DecodeError(f"field '{key}' must be a list of strings")
    return tuple(value)


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _map(data: dict[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return _empty_map()
    if not isinstance(value, dict):
        raise DecodeError(f"field '{key}' must be an object, got {type(value).__name__}")
    return _freeze(value)


def _empty_map() -> Mapping[str, Any]:
    return MappingProxyType({})


def _map_field() -> Any:
    # Read-only view; left out of the hash, still compared for equality
    return field(default_factory=_empty_map, hash=False)


def _records(data: dict[str, Any], key: str, cls: type[T]) -> tuple[T, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise DecodeError(f"field '{key}' must be a list, got {type(value).__name__}")
    return tuple(_from_json(cls, item) for item in value)


def _from_json(cls: type[T], item: Any) -> T:
    if item is None:
        return cls()
    if not isinstance(item, dict):
        raise DecodeError(f"expected a JSON object for {cls.__name__}, got {type(item).__name__}")
    return cls.from_dict(item)  # type: ignore[attr-defined]


# ── Entities ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Region:
    name: str = ""


@dataclass(frozen=True)
class Container:
    """A running instance of one service within a stack."""

    name: str = ""
    uuid: str = ""
    primary_ip: str = ""
    ips: tuple[str, ...] = ()
    ports: tuple[str, ...] = ()
    service_name: str = ""
    stack_name: str = ""
    labels: Mapping[str, Any] = _map_field()
    create_index: int = 0
    host_uuid: str = ""
    hostname: str = ""
    health_state: str = ""
    state: str = ""
    start_count: int = 0
    service_index: str = ""
    network_uuid: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Container:
        return cls(
            name=_str(data, "name"),
            uuid=_str(data, "uuid"),
            primary_ip=_str(data, "primary_ip"),
            ips=_strs(data, "ips"),
            ports=_strs(data, "ports"),
            service_name=_str(data, "service_name"),
            stack_name=_str(data, "stack_name"),
            labels=_map(data, "labels"),
            create_index=_int(data, "create_index"),
            host_uuid=_str(data, "host_uuid"),
            hostname=_str(data, "hostname"),
            health_state=_str(data, "health_state"),
            state=_str(data, "state"),
            start_count=_int(data, "start_count"),
            service_index=_str(data, "service_index"),
            network_uuid=_str(data, "network_uuid"),
        )


@dataclass(frozen=True)
class Service:
    """A deployable unit identified by (stack_name, name)."""

    name: str = ""
    stack_name: str = ""
    kind: str = ""
    uuid: str = ""
    state: str = ""
    hostname: str = ""
    vip: str = ""
    fqdn: str = ""
    scale: int = 0
    ports: tuple[str, ...] = ()
    expose: tuple[str, ...] = ()
    sidekicks: tuple[str, ...] = ()
    external_ips: tuple[str, ...] = ()
    labels: Mapping[str, Any] = _map_field()
    links: Mapping[str, Any] = _map_field()
    metadata: Mapping[str, Any] = _map_field()
    containers: tuple[Container, ...] = ()
    primary_service_name: str = ""
    environment_uuid: str = ""
    environment_name: str = ""
    region_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Service:
        return cls(
            name=_str(data, "name"),
            stack_name=_str(data, "stack_name"),
            kind=_str(data, "kind"),
            uuid=_str(data, "uuid"),
            state=_str(data, "state"),
            hostname=_str(data, "hostname"),
            vip=_str(data, "vip"),
            fqdn=_str(data, "fqdn"),
            scale=_int(data, "scale"),
            ports=_strs(data, "ports"),
            expose=_strs(data, "expose"),
            sidekicks=_strs(data, "sidekicks"),
            external_ips=_strs(data, "external_ips"),
            labels=_map(data, "labels"),
            links=_map(data, "links"),
            metadata=_map(data, "metadata"),
            containers=_records(data, "containers", Container),
            primary_service_name=_str(data, "primary_service_name"),
            environment_uuid=_str(data, "environment_uuid"),
            environment_name=_str(data, "environment_name"),
            region_name=_str(data, "region_name"),
        )


@dataclass(frozen=True)
class Stack:
    name: str = ""
    uuid: str = ""
    environment_name: str = ""
    environment_uuid: str = ""
    region_name: str = ""
    services: tuple[Service, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Stack:
        return cls(
            name=_str(data, "name"),
            uuid=_str(data, "uuid"),
            environment_name=_str(data, "environment_name"),
            environment_uuid=_str(data, "environment_uuid"),
            region_name=_str(data, "region_name"),
            services=_records(data, "services", Service),
        )


@dataclass(frozen=True)
class Environment:
    """Named grouping of services within a region.

    The only record through which region/environment/service nesting is
    available in bulk.
    """

    name: str = ""
    uuid: str = ""
    region_name: str = ""
    services: tuple[Service, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Environment:
        return cls(
            name=_str(data, "name"),
            uuid=_str(data, "uuid"),
            region_name=_str(data, "region_name"),
            services=_records(data, "services", Service),
        )


@dataclass(frozen=True)
class Host:
    uuid: str = ""
    name: str = ""
    hostname: str = ""
    agent_ip: str = ""
    agent_state: str = ""
    state: str = ""
    labels: Mapping[str, Any] = _map_field()
    memory: int = 0
    milli_cpu: int = 0
    local_storage_mb: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Host:
        return cls(
            uuid=_str(data, "uuid"),
            name=_str(data, "name"),
            hostname=_str(data, "hostname"),
            agent_ip=_str(data, "agent_ip"),
            agent_state=_str(data, "agent_state"),
            state=_str(data, "state"),
            labels=_map(data, "labels"),
            memory=_int(data, "memory"),
            milli_cpu=_int(data, "milli_cpu"),
            local_storage_mb=_int(data, "local_storage_mb"),
        )


@dataclass(frozen=True)
class Network:
    name: str = ""
    uuid: str = ""
    is_default: bool = False
    host_ports: bool = False
    default_policy_action: str = ""
    metadata: Mapping[str, Any] = _map_field()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Network:
        return cls(
            name=_str(data, "name"),
            uuid=_str(data, "uuid"),
            is_default=_bool(data, "is_default"),
            host_ports=_bool(data, "host_ports"),
            default_policy_action=_str(data, "default_policy_action"),
            metadata=_map(data, "metadata"),
        )


# ── Decoder ─────────────────────────────────────────────────────────


def _parse(body: bytes | str, path: str | None) -> Any:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise DecodeError(f"Invalid JSON from {path}: {exc}", path=path) from exc


def decode_object(body: bytes | str, cls: type[T], path: str | None = None) -> T:
    """Decode a JSON object body into ``cls``. ``null`` yields the zero value."""
    raw = _parse(body, path)
    try:
        return _from_json(cls, raw)
    except DecodeError as exc:
        raise DecodeError(f"{path}: {exc}" if path else str(exc), path=path) from exc


def decode_list(body: bytes | str, cls: type[T], path: str | None = None) -> list[T]:
    """Decode a JSON array body into a list of ``cls``. ``null`` yields an empty list."""
    raw = _parse(body, path)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise DecodeError(f"{path}: expected a JSON array, got {type(raw).__name__}", path=path)
    try:
        return [_from_json(cls, item) for item in raw]
    except DecodeError as exc:
        raise DecodeError(f"{path}: {exc}" if path else str(exc), path=path) from exc


def unquote(value: str) -> str:
    """Strip one leading and one trailing double quote, if present."""
    if value.endswith('"'):
        value = value[:-1]
    if value.startswith('"'):
        value = value[1:]
    return value


def to_dict(record: Any) -> dict[str, Any]:
    """Convert an entity into plain dicts and lists, ready for ``json.dumps``."""
    return {f.name: _thaw(getattr(record, f.name)) for f in fields(record)}


def _thaw(value: Any) -> Any:
    if is_dataclass(value):
        return to_dict(value)
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return value
