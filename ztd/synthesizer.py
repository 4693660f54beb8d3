from __future__ import annotations

from collections import defaultdict
from typing import Callable, Iterable

from . import db
from .errors import LabelError
from .labels import HTTP, ROUTERS, SERVICES, TCP, TraefikLabels
from .routing import HealthCheckSpec, RoutingConfig, publish
from .runtime import ContainerRef, ContainerRuntime, ordered


DEFAULT_HTTP_PORT = "80"

LogFn = Callable[..., None]


def _group_by_service(containers: Iterable[ContainerRef], service_names: Iterable[str]) -> dict[str, list[ContainerRef]]:
    allowed = set(service_names)
    groups: dict[str, list[ContainerRef]] = defaultdict(list)
    for c in containers:
        if c.service and c.service in allowed and c.running:
            groups[c.service].append(c)
    return {name: ordered(groups[name]) for name in sorted(groups)}


def _http_part(config: RoutingConfig, name: str, labels: TraefikLabels, containers: list[ContainerRef], log: LogFn) -> bool:
    rule = labels.get(HTTP, ROUTERS, "rule")
    if not rule:
        return False

    port = labels.get(HTTP, SERVICES, "port", default=DEFAULT_HTTP_PORT)
    urls = [f"http://{c.short_id}:{port}" for c in containers]

    health_check = None
    if labels.has_healthcheck():
        # LabelError (bad header JSON) propagates: the whole service is skipped.
        health_check = HealthCheckSpec.model_validate(labels.healthcheck())
        if health_check.is_empty():
            health_check = None

    added = config.add_http_service(name, rule, urls, health_check, labels.entrypoints(HTTP))
    if added:
        log("INFO", f"Routing {rule} -> {', '.join(urls)}", service_name=name)
    return added


def _tcp_part(config: RoutingConfig, name: str, labels: TraefikLabels, containers: list[ContainerRef], log: LogFn) -> bool:
    rule = labels.get(TCP, ROUTERS, "rule")
    if not rule:
        return False

    port = labels.get(TCP, SERVICES, "port")
    if not port:
        log("WARN", "TCP router has no loadbalancer.server.port label; skipping TCP routing", service_name=name)
        return False

    addresses = [f"{c.short_id}:{port}" for c in containers]
    added = config.add_tcp_service(name, rule, addresses, labels.entrypoints(TCP))
    if added:
        log("INFO", f"TCP routing {rule} -> {', '.join(addresses)}", service_name=name)
    return added


def synthesize(
    containers: Iterable[ContainerRef],
    service_names: Iterable[str],
    log: LogFn = db.log_event,
) -> RoutingConfig:
    """Build the full routing document from live containers and their labels.

    A service that is not enabled, has no router rule, or carries malformed
    labels is skipped; the other services are unaffected.
    """
    config = RoutingConfig()
    for name, group in _group_by_service(containers, service_names).items():
        # Labels come from the service definition, so any replica is representative.
        labels = TraefikLabels(group[0].labels, name)
        if not labels.enabled:
            log("INFO", "Skipping service (traefik.enable is not true)", service_name=name)
            continue

        try:
            routed_http = _http_part(config, name, labels, group, log)
        except LabelError as e:
            log("WARN", f"Skipping service: {e}", service_name=name)
            continue
        routed_tcp = _tcp_part(config, name, labels, group, log)

        if not (routed_http or routed_tcp):
            log("WARN", "No router rule found; service is not routed", service_name=name)
    return config


def publish_synthesized(
    runtime: ContainerRuntime,
    service_names: Iterable[str],
    conf_path: str,
    log: LogFn = db.log_event,
) -> RoutingConfig:
    """Resynthesize from the current container inventory and publish atomically.

    Raises PublishError if the document cannot be written.
    """
    config = synthesize(runtime.list_containers(), service_names, log=log)
    publish(config, conf_path)
    log("INFO", f"Traefik configuration written to {conf_path}")
    return config
