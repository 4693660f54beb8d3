from __future__ import annotations

import os
import tempfile
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .errors import PublishError


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class HealthCheckSpec(_Model):
    path: str | None = None
    interval: str | None = None
    timeout: str | None = None
    scheme: str | None = None
    mode: str | None = None
    hostname: str | None = None
    port: str | None = None
    follow_redirects: str | None = Field(default=None, alias="followRedirects")
    method: str | None = None
    status: str | None = None
    headers: dict[str, str] | None = None

    def is_empty(self) -> bool:
        return not any(v for v in self.model_dump().values())


class Server(_Model):
    url: str


class LoadBalancer(_Model):
    servers: list[Server]
    health_check: HealthCheckSpec | None = Field(default=None, alias="healthCheck")


class BackendService(_Model):
    load_balancer: LoadBalancer = Field(alias="loadBalancer")


class Router(_Model):
    rule: str
    service: str
    entry_points: list[str] | None = Field(default=None, alias="entryPoints")


class HttpSection(_Model):
    routers: dict[str, Router] = Field(default_factory=dict)
    services: dict[str, BackendService] = Field(default_factory=dict)


class TcpServer(_Model):
    address: str


class TcpLoadBalancer(_Model):
    servers: list[TcpServer]


class TcpService(_Model):
    load_balancer: TcpLoadBalancer = Field(alias="loadBalancer")


class TcpSection(_Model):
    routers: dict[str, Router] = Field(default_factory=dict)
    services: dict[str, TcpService] = Field(default_factory=dict)


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


class RoutingConfig(_Model):
    """In-memory view of the Traefik dynamic configuration document."""

    http: HttpSection = Field(default_factory=HttpSection)
    tcp: TcpSection | None = None

    def add_http_service(
        self,
        name: str,
        rule: str,
        urls: list[str],
        health_check: HealthCheckSpec | None = None,
        entry_points: list[str] | None = None,
    ) -> bool:
        """Add a router/service pair. Returns False (nothing added) when there are no targets."""
        urls = _unique(urls)
        if not urls:
            return False
        if health_check is not None and health_check.is_empty():
            health_check = None
        self.http.routers[name] = Router(rule=rule, service=name, entry_points=entry_points or None)
        self.http.services[name] = BackendService(
            load_balancer=LoadBalancer(servers=[Server(url=u) for u in urls], health_check=health_check)
        )
        return True

    def add_tcp_service(self, name: str, rule: str, addresses: list[str], entry_points: list[str] | None = None) -> bool:
        addresses = _unique(addresses)
        if not addresses:
            return False
        if self.tcp is None:
            self.tcp = TcpSection()
        self.tcp.routers[name] = Router(rule=rule, service=name, entry_points=entry_points or None)
        self.tcp.services[name] = TcpService(load_balancer=TcpLoadBalancer(servers=[TcpServer(address=a) for a in addresses]))
        return True

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_yaml(self) -> str:
        return dump_yaml(self.to_document(), sort_keys=True)

    @classmethod
    def from_yaml(cls, text: str) -> "RoutingConfig":
        return cls.model_validate(yaml.safe_load(text) or {})


def dump_yaml(document: dict[str, Any], sort_keys: bool = True) -> str:
    return yaml.safe_dump(document, sort_keys=sort_keys, default_flow_style=False, allow_unicode=True)


def load_document(path: str) -> dict[str, Any]:
    """Read a published document as plain data (used by the patcher)."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise PublishError(f"Cannot read routing config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise PublishError(f"Cannot parse routing config {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise PublishError(f"Routing config {path} is not a mapping")
    return data


def atomic_write(path: str, text: str) -> None:
    """Write ``text`` to ``path`` via a temp file in the same directory and a rename.

    Readers of ``path`` see either the previous document or the new one.
    """
    target = os.path.abspath(path)
    parent = os.path.dirname(target)
    try:
        os.makedirs(parent, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{os.path.basename(target)}.", suffix=".tmp", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o644)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
    except OSError as e:
        raise PublishError(f"Cannot write routing config {path}: {e}") from e


def publish(config: RoutingConfig, path: str) -> str:
    text = config.to_yaml()
    atomic_write(path, text)
    return text
