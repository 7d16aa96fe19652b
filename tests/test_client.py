"""Tests for the metadata client accessors and cascading lookups."""

from concurrent.futures import ThreadPoolExecutor

import pytest
import requests
import responses

from infra_metadata.client import MetadataClient, connect
from infra_metadata.config import MetadataConfig
from infra_metadata.exceptions import DecodeError, NotFound, TransportError
from infra_metadata.models import Container, Host, Region, Service

BASE = "http://metadata/latest"

ENVIRONMENTS = [
    {
        "name": "prod",
        "region_name": "eu",
        "services": [
            {"name": "web", "stack_name": "shop", "uuid": "svc-1"},
            {"name": "db", "stack_name": "shop", "uuid": "svc-2"},
        ],
    },
    {
        "name": "prod",
        "region_name": "us",
        "services": [{"name": "web", "stack_name": "shop", "uuid": "svc-3"}],
    },
    {
        "name": "prod",
        "region_name": "eu",
        "services": [{"name": "cache", "stack_name": "infra", "uuid": "svc-4"}],
    },
]

CONTAINERS = [
    {"name": "shop-web-1", "service_name": "web", "stack_name": "shop"},
    {"name": "shop-db-1", "service_name": "db", "stack_name": "shop"},
    {"name": "shop-web-2", "service_name": "web", "stack_name": "shop"},
    {"name": "blog-web-1", "service_name": "web", "stack_name": "blog"},
]

HOSTS = [
    {"uuid": "host-a", "name": "node-a", "agent_ip": "10.0.0.1"},
    {"uuid": "host-b", "name": "node-b", "agent_ip": "10.0.0.2"},
]


@pytest.fixture
def client():
    return MetadataClient(BASE)


@pytest.fixture
def strict_client():
    return MetadataClient(BASE, strict_lookups=True)


class TestRequests:
    @responses.activate
    def test_sends_accept_header(self, client):
        responses.add(responses.GET, f"{BASE}/version", body="42")
        client.get_version()
        assert responses.calls[0].request.headers["Accept"] == "application/json"
        assert "X-Forwarded-For" not in responses.calls[0].request.headers

    @responses.activate
    def test_forwards_source_ip(self):
        responses.add(responses.GET, f"{BASE}/version", body="42")
        MetadataClient(BASE, source_ip="10.1.2.3").get_version()
        assert responses.calls[0].request.headers["X-Forwarded-For"] == "10.1.2.3"

    @responses.activate
    def test_non_200_is_transport_error(self, client):
        responses.add(responses.GET, f"{BASE}/hosts", body="nope", status=404)
        with pytest.raises(TransportError) as exc_info:
            client.get_hosts()
        assert exc_info.value.status_code == 404
        assert exc_info.value.path == "/hosts"

    @responses.activate
    def test_connection_failure_is_transport_error(self, client):
        responses.add(
            responses.GET, f"{BASE}/version",
            body=requests.ConnectionError("refused"),
        )
        with pytest.raises(TransportError) as exc_info:
            client.get_version()
        assert exc_info.value.status_code is None

    @responses.activate
    def test_malformed_body_is_decode_error(self, client):
        responses.add(responses.GET, f"{BASE}/self/host", body="{not json")
        with pytest.raises(DecodeError) as exc_info:
            client.get_self_host()
        assert exc_info.value.path == "/self/host"

    def test_requires_url_or_transport(self):
        with pytest.raises(ValueError):
            MetadataClient()


class TestScalars:
    @responses.activate
    def test_version_is_raw_body(self, client):
        responses.add(responses.GET, f"{BASE}/version", body="abc-123")
        assert client.get_version() == "abc-123"

    @responses.activate
    def test_region_name_is_unquoted(self, client):
        responses.add(responses.GET, f"{BASE}/region_name", body='"eu"')
        assert client.get_region_name() == "eu"

    @responses.activate
    def test_region(self, client):
        responses.add(responses.GET, f"{BASE}/region_name", body='"eu"')
        assert client.get_region() == Region(name="eu")


class TestAccessors:
    @responses.activate
    def test_self_service(self, client):
        responses.add(
            responses.GET, f"{BASE}/self/service",
            json={"name": "web", "stack_name": "shop", "scale": 2},
        )
        svc = client.get_self_service()
        assert svc.name == "web"
        assert svc.scale == 2

    @responses.activate
    def test_self_service_by_name(self, client):
        responses.add(
            responses.GET, f"{BASE}/self/stack/services/db",
            json={"name": "db", "stack_name": "shop"},
        )
        assert client.get_self_service_by_name("db").name == "db"

    @responses.activate
    def test_service_by_name(self, client):
        responses.add(
            responses.GET, f"{BASE}/stacks/shop/services/web",
            json={"name": "web", "stack_name": "shop"},
        )
        assert client.get_service_by_name("shop", "web").stack_name == "shop"

    @responses.activate
    def test_stack_by_name(self, client):
        responses.add(
            responses.GET, f"{BASE}/stacks/shop",
            json={"name": "shop", "services": [{"name": "web"}]},
        )
        stack = client.get_stack_by_name("shop")
        assert stack.name == "shop"
        assert stack.services[0].name == "web"

    @responses.activate
    def test_listings(self, client):
        responses.add(responses.GET, f"{BASE}/networks", json=[{"name": "ipsec", "is_default": True}])
        responses.add(responses.GET, f"{BASE}/stacks", json=[{"name": "shop"}, {"name": "blog"}])
        assert client.get_networks()[0].is_default is True
        assert [s.name for s in client.get_stacks()] == ["shop", "blog"]


class TestServiceCascade:
    @responses.activate
    def test_resolves_by_region_environment(self, client):
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        svc = client.get_service_by_region_environment("us", "prod", "shop", "web")
        assert svc.uuid == "svc-3"

    @responses.activate
    def test_first_match_wins(self, client):
        envs = ENVIRONMENTS + [{
            "name": "prod", "region_name": "eu",
            "services": [{"name": "web", "stack_name": "shop", "uuid": "dup"}],
        }]
        responses.add(responses.GET, f"{BASE}/environments", json=envs)
        assert client.get_service_by_region_environment("eu", "prod", "shop", "web").uuid == "svc-1"

    @responses.activate
    def test_no_match_returns_empty_service(self, client):
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        assert client.get_service_by_region_environment("eu", "prod", "shop", "missing") == Service()
        assert client.get_service_by_region_environment("eu", "staging", "shop", "web") == Service()

    @responses.activate
    def test_strict_no_match_raises(self, strict_client):
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        with pytest.raises(NotFound) as exc_info:
            strict_client.get_service_by_region_environment("eu", "prod", "shop", "missing")
        assert exc_info.value.kind == "service"
        assert exc_info.value.key == "eu/prod/shop/missing"

    @responses.activate
    def test_by_environment_matches_region_qualified_form(self, client):
        responses.add(responses.GET, f"{BASE}/region_name", body='"eu"')
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        by_env = client.get_service_by_environment("prod", "shop", "db")
        by_region = client.get_service_by_region_environment("eu", "prod", "shop", "db")
        assert by_env == by_region
        assert by_env.uuid == "svc-2"

    @responses.activate
    def test_by_environment_fetches_region_first(self, client):
        responses.add(responses.GET, f"{BASE}/region_name", body='"eu"')
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        client.get_service_by_environment("prod", "shop", "web")
        assert [c.request.url for c in responses.calls] == [
            f"{BASE}/region_name", f"{BASE}/environments",
        ]

    @responses.activate
    def test_by_environment_propagates_region_error(self, client):
        responses.add(responses.GET, f"{BASE}/region_name", status=500)
        with pytest.raises(TransportError):
            client.get_service_by_environment("prod", "shop", "web")
        assert len(responses.calls) == 1

    @responses.activate
    def test_services_concatenate_matching_environments(self, client):
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        services = client.get_services_by_region_environment("eu", "prod")
        assert [s.uuid for s in services] == ["svc-1", "svc-2", "svc-4"]

    @responses.activate
    def test_services_by_environment_uses_own_region(self, client):
        responses.add(responses.GET, f"{BASE}/region_name", body='"us"')
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        assert [s.uuid for s in client.get_services_by_environment("prod")] == ["svc-3"]

    @responses.activate
    def test_every_call_refetches(self, client):
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        client.get_services_by_region_environment("eu", "prod")
        client.get_services_by_region_environment("eu", "prod")
        assert len(responses.calls) == 2


class TestHostLookup:
    @responses.activate
    def test_found(self, client):
        responses.add(responses.GET, f"{BASE}/hosts", json=HOSTS)
        assert client.get_host("host-b") == Host(uuid="host-b", name="node-b", agent_ip="10.0.0.2")

    @responses.activate
    def test_missing_raises_not_found_with_uuid(self, client):
        responses.add(responses.GET, f"{BASE}/hosts", json=HOSTS)
        with pytest.raises(NotFound) as exc_info:
            client.get_host("host-z")
        assert exc_info.value.key == "host-z"
        assert "host-z" in str(exc_info.value)


class TestServiceContainers:
    @responses.activate
    def test_filters_by_stack_and_service(self, client):
        responses.add(responses.GET, f"{BASE}/containers", json=CONTAINERS)
        containers = client.get_service_containers("web", "shop")
        assert [c.name for c in containers] == ["shop-web-1", "shop-web-2"]
        assert all(isinstance(c, Container) for c in containers)

    @responses.activate
    def test_no_match_is_empty_list(self, strict_client):
        responses.add(responses.GET, f"{BASE}/containers", json=CONTAINERS)
        assert strict_client.get_service_containers("api", "shop") == []


class TestConcurrency:
    @responses.activate
    def test_parallel_lookups_share_client(self, client):
        responses.add(responses.GET, f"{BASE}/environments", json=ENVIRONMENTS)
        responses.add(responses.GET, f"{BASE}/hosts", json=HOSTS)

        def lookup(i):
            if i % 2:
                return client.get_service_by_region_environment("eu", "prod", "shop", "web").uuid
            return client.get_host("host-a").uuid

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lookup, range(32)))
        assert results == ["host-a" if i % 2 == 0 else "svc-1" for i in range(32)]


class TestConnect:
    @responses.activate
    def test_connect_retries_until_reachable(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr("infra_metadata.client.time.sleep", sleeps.append)
        responses.add(responses.GET, f"{BASE}/version", status=503)
        responses.add(responses.GET, f"{BASE}/version", status=503)
        responses.add(responses.GET, f"{BASE}/version", body="7")
        client = connect(BASE)
        assert isinstance(client, MetadataClient)
        assert sleeps == [1.0, 2.0]

    @responses.activate
    def test_connect_gives_up(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr("infra_metadata.client.time.sleep", sleeps.append)
        responses.add(responses.GET, f"{BASE}/version", status=503)
        with pytest.raises(TransportError):
            connect(BASE, max_wait_seconds=20)
        assert sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]

    @responses.activate
    def test_from_config_waits_when_configured(self, monkeypatch):
        monkeypatch.setattr("infra_metadata.client.time.sleep", lambda _: None)
        responses.add(responses.GET, f"{BASE}/version", body="1")
        config = MetadataConfig(url=BASE, wait_for_connection=True, source_ip="10.9.9.9")
        client = MetadataClient.from_config(config)
        assert len(responses.calls) == 1
        assert client.get_version() == "1"
        assert responses.calls[1].request.headers["X-Forwarded-For"] == "10.9.9.9"


class TestWatch:
    @responses.activate
    def test_watch_emits_changes(self, client):
        responses.add(responses.GET, f"{BASE}/version", body="v1")
        responses.add(responses.GET, f"{BASE}/version", body="v2")
        watcher = client.watch(0.01)
        try:
            assert next(iter(watcher)) == "v2"
        finally:
            watcher.stop(timeout=5)

    @responses.activate
    def test_watch_checked_failed_startup_read(self, client):
        responses.add(responses.GET, f"{BASE}/version", status=503)
        responses.add(responses.GET, f"{BASE}/version", body="v1")
        responses.add(responses.GET, f"{BASE}/version", body="v2")
        fired = []
        with pytest.raises(TransportError) as exc_info:
            client.watch_checked(0.01, fired.append, notify_initial=True)
        assert exc_info.value.status_code == 503
        assert client.get_version() == "v1"
        assert len(responses.calls) == 2
        assert fired == []

    @responses.activate
    def test_watch_checked_starts_after_startup_read(self, client):
        responses.add(responses.GET, f"{BASE}/version", body="v1")
        responses.add(responses.GET, f"{BASE}/version", body="v2")
        watcher = client.watch_checked(0.01)
        try:
            assert watcher.running
            assert next(iter(watcher)) == "v2"
        finally:
            watcher.stop(timeout=5)
