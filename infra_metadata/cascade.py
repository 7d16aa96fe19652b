"""In-memory search over bulk listings fetched from the metadata service.

The service offers no filtered queries for these relationships, so every
lookup fetches the coarsest listing holding the relationship and scans it
here. Scans are linear and the first match in encounter order wins.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import Container, Environment, Host, Service

logger = logging.getLogger(__name__)


def _matching_environments(
    environments: Iterable[Environment], region: str, environment: str,
) -> Iterable[Environment]:
    for env in environments:
        if env.region_name == region and env.name == environment:
            yield env


def find_environment_service(
    environments: Iterable[Environment],
    region: str,
    environment: str,
    stack: str,
    service: str,
) -> Service | None:
    """Return the first service named ``stack/service`` inside a matching environment."""
    for env in _matching_environments(environments, region, environment):
        for svc in env.services:
            if svc.stack_name == stack and svc.name == service:
                return svc
    logger.debug(
        "No service %s/%s in environment %s@%s", stack, service, environment, region,
    )
    return None


def collect_environment_services(
    environments: Iterable[Environment], region: str, environment: str,
) -> list[Service]:
    """Concatenate the services of every environment matching ``region`` and name."""
    services: list[Service] = []
    for env in _matching_environments(environments, region, environment):
        services.extend(env.services)
    return services


def find_host(hosts: Iterable[Host], uuid: str) -> Host | None:
    for host in hosts:
        if host.uuid == uuid:
            return host
    return None


def filter_service_containers(
    containers: Iterable[Container], service_name: str, stack_name: str,
) -> list[Container]:
    return [
        c for c in containers
        if c.stack_name == stack_name and c.service_name == service_name
    ]
