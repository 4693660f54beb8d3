from __future__ import annotations

from typing import Any

import docker
from docker.errors import DockerException, NotFound

from .compose import ComposeProject
from .errors import RuntimeAdapterError
from .runtime import NUMBER_LABEL, PROJECT_LABEL, SERVICE_LABEL, ContainerRef, HealthStatus


def _health_from_attrs(attrs: dict[str, Any]) -> HealthStatus:
    health = (attrs.get("State") or {}).get("Health")
    if not health:
        return HealthStatus.NONE
    try:
        return HealthStatus(str(health.get("Status", "")).lower())
    except ValueError:
        return HealthStatus.STARTING


def _number(labels: dict[str, str]) -> int:
    try:
        return int(labels.get(NUMBER_LABEL, "0"))
    except ValueError:
        return 0


class DockerRuntime:
    """Container runtime backed by the Docker SDK and the ``docker compose`` CLI.

    Listing, inspection, stop and remove go through the SDK; scale/up/logs
    go through compose because the SDK has no compose support.
    """

    def __init__(self, compose: ComposeProject, client: docker.DockerClient | None = None):
        self.compose = compose
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise RuntimeAdapterError(f"Docker is not available: {e}") from e
        return self._client

    def _ref(self, container: Any) -> ContainerRef:
        labels = dict(container.labels or {})
        return ContainerRef(
            id=container.id,
            service=labels.get(SERVICE_LABEL, ""),
            number=_number(labels),
            project=labels.get(PROJECT_LABEL, ""),
            state=container.status,
            health=_health_from_attrs(container.attrs),
            labels=labels,
        )

    def list_containers(self, service: str | None = None) -> list[ContainerRef]:
        """All containers (any state) of this compose project, optionally for one service."""
        label_filters = [f"{PROJECT_LABEL}={self.compose.project_name}"]
        label_filters.append(f"{SERVICE_LABEL}={service}" if service else SERVICE_LABEL)
        try:
            containers = self.client.containers.list(all=True, filters={"label": label_filters})
        except DockerException as e:
            raise RuntimeAdapterError(f"Failed to list containers: {e}") from e
        return [self._ref(c) for c in containers]

    def health_status(self, container_id: str) -> HealthStatus:
        try:
            container = self.client.containers.get(container_id)
        except NotFound as e:
            raise RuntimeAdapterError(f"Container {container_id[:12]} disappeared") from e
        except DockerException as e:
            raise RuntimeAdapterError(f"Failed to inspect container {container_id[:12]}: {e}") from e
        return _health_from_attrs(container.attrs)

    def scale(self, service: str, replicas: int) -> None:
        # --no-recreate keeps the running replicas untouched so old and new overlap.
        self.compose.run("up", "--detach", "--scale", f"{service}={int(replicas)}", "--no-recreate", service)

    def start_service(self, service: str) -> None:
        self.compose.run("up", "--detach", "--no-recreate", service, capture=False)

    def up(self) -> None:
        self.compose.run("up", "--detach", capture=False)

    def stop(self, container_id: str, timeout_s: int) -> None:
        try:
            self.client.containers.get(container_id).stop(timeout=timeout_s)
        except DockerException as e:
            raise RuntimeAdapterError(f"Failed to stop container {container_id[:12]}: {e}") from e

    def remove(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).remove(force=True)
        except DockerException as e:
            raise RuntimeAdapterError(f"Failed to remove container {container_id[:12]}: {e}") from e

    def follow_logs(self) -> None:
        try:
            self.compose.run("logs", "--follow", "--tail=1", capture=False)
        except KeyboardInterrupt:
            return
