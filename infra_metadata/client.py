"""Typed client for the infrastructure metadata service."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from urllib.parse import quote

import requests

from . import cascade
from .config import MetadataConfig
from .exceptions import MetadataError, NotFound
from .logging_config import error_fields
from .models import (
    Container,
    Environment,
    Host,
    Network,
    Region,
    Service,
    Stack,
    decode_list,
    decode_object,
    unquote,
)
from .transport import DEFAULT_TIMEOUT, Transport
from .watcher import VersionWatcher

logger = logging.getLogger(__name__)


def _segment(name: str) -> str:
    return quote(name, safe="")


class MetadataClient:
    """Accessors for the metadata service plus lookups built on bulk listings.

    Nothing is cached: each call fetches what it needs, so results reflect
    the service at call time. Calls may be made concurrently from several
    threads; the only shared state is the transport's connection pool.

    Name-based service lookups return ``Service()`` when nothing matches,
    unless ``strict_lookups`` is set, in which case they raise ``NotFound``
    like ``get_host`` always does.
    """

    def __init__(
        self,
        base_url: str | None = None,
        source_ip: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        strict_lookups: bool = False,
        pool_maxsize: int = 10,
        transport: Transport | None = None,
    ):
        if transport is None:
            if not base_url:
                raise ValueError("base_url or transport is required")
            transport = Transport(
                base_url,
                source_ip=source_ip,
                timeout=timeout,
                session=session,
                pool_maxsize=pool_maxsize,
            )
        self._transport = transport
        self._strict = strict_lookups

    @classmethod
    def from_config(cls, config: MetadataConfig) -> MetadataClient:
        client = cls(
            config.url,
            source_ip=config.source_ip or None,
            timeout=config.timeout,
            strict_lookups=config.strict_lookups,
            pool_maxsize=config.pool_maxsize,
        )
        if config.wait_for_connection:
            try:
                client.wait_for_connection(config.max_wait_seconds)
            except MetadataError:
                client.close()
                raise
        return client

    def close(self) -> None:
        self._transport.close()

    def __enter__(self) -> MetadataClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # ── Connectivity ────────────────────────────────────────────────

    def wait_for_connection(self, max_wait_seconds: float = 20) -> None:
        """Block until the version endpoint answers, doubling the delay between tries.

        Raises the last error once the next delay would reach ``max_wait_seconds``.
        """
        delay = 1.0
        while True:
            try:
                self.get_version()
                return
            except MetadataError as exc:
                if delay >= max_wait_seconds:
                    logger.error("Metadata service unreachable: %s", exc, extra=error_fields(exc))
                    raise
                logger.info(
                    "Metadata service not ready, retrying in %.0fs: %s", delay, exc,
                    extra=error_fields(exc),
                )
                time.sleep(delay)
                delay *= 2

    # ── Raw access ──────────────────────────────────────────────────

    def send_request(self, path: str) -> bytes:
        return self._transport.fetch(path)

    def _get_object(self, path: str, cls: type):
        return decode_object(self.send_request(path), cls, path=path)

    def _get_list(self, path: str, cls: type) -> list:
        return decode_list(self.send_request(path), cls, path=path)

    # ── Scalars ─────────────────────────────────────────────────────

    def get_version(self) -> str:
        return self.send_request("/version").decode("utf-8", errors="replace")

    def get_region_name(self) -> str:
        return unquote(self.send_request("/region_name").decode("utf-8", errors="replace"))

    def get_region(self) -> Region:
        return Region(name=self.get_region_name())

    # ── Self ────────────────────────────────────────────────────────

    def get_self_host(self) -> Host:
        return self._get_object("/self/host", Host)

    def get_self_container(self) -> Container:
        return self._get_object("/self/container", Container)

    def get_self_service(self) -> Service:
        return self._get_object("/self/service", Service)

    def get_self_stack(self) -> Stack:
        return self._get_object("/self/stack", Stack)

    def get_self_service_by_name(self, name: str) -> Service:
        return self._get_object(f"/self/stack/services/{_segment(name)}", Service)

    # ── Direct lookups ──────────────────────────────────────────────

    def get_service_by_name(self, stack_name: str, service_name: str) -> Service:
        path = f"/stacks/{_segment(stack_name)}/services/{_segment(service_name)}"
        return self._get_object(path, Service)

    def get_stack_by_name(self, name: str) -> Stack:
        return self._get_object(f"/stacks/{_segment(name)}", Stack)

    # ── Listings ────────────────────────────────────────────────────

    def get_services(self) -> list[Service]:
        return self._get_list("/services", Service)

    def get_stacks(self) -> list[Stack]:
        return self._get_list("/stacks", Stack)

    def get_containers(self) -> list[Container]:
        return self._get_list("/containers", Container)

    def get_hosts(self) -> list[Host]:
        return self._get_list("/hosts", Host)

    def get_networks(self) -> list[Network]:
        return self._get_list("/networks", Network)

    def get_environments(self) -> list[Environment]:
        return self._get_list("/environments", Environment)

    # ── Cascading lookups ───────────────────────────────────────────

    def get_service_by_region_environment(
        self, region_name: str, environment_name: str, stack_name: str, service_name: str,
    ) -> Service:
        found = cascade.find_environment_service(
            self.get_environments(), region_name, environment_name, stack_name, service_name,
        )
        if found is not None:
            return found
        if self._strict:
            raise NotFound(
                "service", f"{region_name}/{environment_name}/{stack_name}/{service_name}",
            )
        return Service()

    def get_service_by_environment(
        self, environment_name: str, stack_name: str, service_name: str,
    ) -> Service:
        region_name = self.get_region_name()
        return self.get_service_by_region_environment(
            region_name, environment_name, stack_name, service_name,
        )

    def get_services_by_region_environment(
        self, region_name: str, environment_name: str,
    ) -> list[Service]:
        return cascade.collect_environment_services(
            self.get_environments(), region_name, environment_name,
        )

    def get_services_by_environment(self, environment_name: str) -> list[Service]:
        region_name = self.get_region_name()
        return self.get_services_by_region_environment(region_name, environment_name)

    def get_service_containers(self, service_name: str, stack_name: str) -> list[Container]:
        return cascade.filter_service_containers(self.get_containers(), service_name, stack_name)

    def get_host(self, uuid: str) -> Host:
        host = cascade.find_host(self.get_hosts(), uuid)
        if host is None:
            raise NotFound("host", uuid)
        return host

    # ── Change notification ─────────────────────────────────────────

    def watch(
        self,
        interval_seconds: float,
        callback: Callable[[str], None] | None = None,
        notify_initial: bool = False,
        name: str | None = None,
    ) -> VersionWatcher:
        """Start polling the version in the background and return the watcher."""
        return VersionWatcher(
            self.get_version,
            interval_seconds,
            callback=callback,
            notify_initial=notify_initial,
            name=name,
        ).start()

    def watch_checked(
        self,
        interval_seconds: float,
        callback: Callable[[str], None] | None = None,
        notify_initial: bool = False,
        name: str | None = None,
    ) -> VersionWatcher:
        """Like ``watch`` but reads the version once first; its error is raised here."""
        return VersionWatcher(
            self.get_version,
            interval_seconds,
            callback=callback,
            eager_check=True,
            notify_initial=notify_initial,
            name=name,
        ).start()


def connect(
    base_url: str,
    source_ip: str | None = None,
    max_wait_seconds: float = 20,
    **kwargs,
) -> MetadataClient:
    """Build a client and block until the metadata service answers."""
    client = MetadataClient(base_url, source_ip=source_ip, **kwargs)
    try:
        client.wait_for_connection(max_wait_seconds)
    except MetadataError:
        client.close()
        raise
    return client
