import os

import pytest
import yaml

from ztd.errors import PublishError
from ztd.routing import HealthCheckSpec, RoutingConfig, atomic_write, load_document, publish


def test_empty_healthcheck_is_never_emitted():
    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://abc:80"], HealthCheckSpec())

    lb = config.to_document()["http"]["services"]["api"]["loadBalancer"]
    assert "healthCheck" not in lb


def test_single_header_healthcheck_is_emitted_alone():
    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://abc:80"], HealthCheckSpec(headers={"X-Probe": "1"}))

    lb = config.to_document()["http"]["services"]["api"]["loadBalancer"]
    assert lb["healthCheck"] == {"headers": {"X-Probe": "1"}}


def test_healthcheck_uses_traefik_field_names():
    spec = HealthCheckSpec.model_validate({"path": "/health", "followRedirects": "false"})
    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://abc:80"], spec)

    hc = config.to_document()["http"]["services"]["api"]["loadBalancer"]["healthCheck"]
    assert hc == {"path": "/health", "followRedirects": "false"}


def test_service_without_targets_is_omitted_with_its_router():
    config = RoutingConfig()
    assert config.add_http_service("api", "Host(`a.com`)", []) is False
    assert config.http.routers == {}
    assert config.http.services == {}


def test_target_addresses_are_unique():
    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://a:80", "http://b:80", "http://a:80"])
    servers = config.to_document()["http"]["services"]["api"]["loadBalancer"]["servers"]
    assert servers == [{"url": "http://a:80"}, {"url": "http://b:80"}]


def test_every_router_has_a_service():
    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://a:80"], entry_points=["web"])
    config.add_tcp_service("db", "HostSNI(`*`)", ["a:5432"])
    doc = config.to_document()

    assert set(doc["http"]["routers"]) == set(doc["http"]["services"])
    assert set(doc["tcp"]["routers"]) == set(doc["tcp"]["services"])
    assert doc["http"]["routers"]["api"] == {"rule": "Host(`a.com`)", "service": "api", "entryPoints": ["web"]}


def test_tcp_section_absent_when_unused():
    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://a:80"])
    assert "tcp" not in config.to_document()


def test_yaml_round_trip_through_model():
    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://a:80"], HealthCheckSpec(path="/h"))
    again = RoutingConfig.from_yaml(config.to_yaml())
    assert again == config


def test_publish_replaces_file_and_leaves_no_temp_files(tmp_path):
    path = tmp_path / "traefik" / "dynamic_conf.yml"
    path.parent.mkdir()
    path.write_text("old: true\n")

    config = RoutingConfig()
    config.add_http_service("api", "Host(`a.com`)", ["http://a:80"])
    text = publish(config, str(path))

    assert path.read_text() == text
    assert yaml.safe_load(text)["http"]["routers"]["api"]["service"] == "api"
    assert os.listdir(path.parent) == ["dynamic_conf.yml"]


def test_publish_creates_missing_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "conf.yml"
    publish(RoutingConfig(), str(path))
    assert path.exists()


def test_atomic_write_failure_is_a_publish_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    with pytest.raises(PublishError):
        atomic_write(str(blocker / "conf.yml"), "x: 1\n")


def test_load_document_errors(tmp_path):
    with pytest.raises(PublishError):
        load_document(str(tmp_path / "missing.yml"))

    bad = tmp_path / "bad.yml"
    bad.write_text("http: [unclosed\n")
    with pytest.raises(PublishError):
        load_document(str(bad))

    scalar = tmp_path / "scalar.yml"
    scalar.write_text("just text\n")
    with pytest.raises(PublishError):
        load_document(str(scalar))
