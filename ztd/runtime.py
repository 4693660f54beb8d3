from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping, Protocol

from .errors import InvalidTransition


SERVICE_LABEL = "com.docker.compose.service"
PROJECT_LABEL = "com.docker.compose.project"
NUMBER_LABEL = "com.docker.compose.container-number"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def short_id(container_id: str) -> str:
    return container_id[:12]


class HealthStatus(str, Enum):
    NONE = "none"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @property
    def ready(self) -> bool:
        # Services without a health check are not required to define one.
        return self in (HealthStatus.NONE, HealthStatus.HEALTHY)


@dataclass(frozen=True)
class ContainerRef:
    id: str
    service: str
    number: int = 0
    project: str = ""
    state: str = "running"
    health: HealthStatus = HealthStatus.NONE
    labels: Mapping[str, str] = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        return short_id(self.id)

    @property
    def running(self) -> bool:
        return self.state == "running"


def ordered(containers: list[ContainerRef]) -> list[ContainerRef]:
    """Order containers by compose container number, then id."""
    return sorted(containers, key=lambda c: (c.number, c.id))


class ContainerRuntime(Protocol):
    """What the deployer and synthesizer need from the container runtime."""

    def list_containers(self, service: str | None = None) -> list[ContainerRef]: ...

    def health_status(self, container_id: str) -> HealthStatus: ...

    def scale(self, service: str, replicas: int) -> None: ...

    def start_service(self, service: str) -> None: ...

    def up(self) -> None: ...

    def stop(self, container_id: str, timeout_s: int) -> None: ...

    def remove(self, container_id: str) -> None: ...

    def follow_logs(self) -> None: ...


class DeployState(str, Enum):
    IDLE = "idle"
    SCALING = "scaling"
    HEALTH_GATING = "health_gating"
    ROUTING_SWAP = "routing_swap"
    DRAINING = "draining"
    CLEANUP = "cleanup"
    RESYNC = "resync"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (DeployState.DONE, DeployState.FAILED)


TRANSITIONS: dict[DeployState, frozenset[DeployState]] = {
    DeployState.IDLE: frozenset({DeployState.SCALING, DeployState.FAILED}),
    DeployState.SCALING: frozenset({DeployState.HEALTH_GATING, DeployState.FAILED}),
    DeployState.HEALTH_GATING: frozenset({DeployState.ROUTING_SWAP, DeployState.ROLLING_BACK, DeployState.FAILED}),
    DeployState.ROUTING_SWAP: frozenset({DeployState.DRAINING, DeployState.FAILED}),
    DeployState.DRAINING: frozenset({DeployState.CLEANUP, DeployState.FAILED}),
    DeployState.CLEANUP: frozenset({DeployState.RESYNC, DeployState.FAILED}),
    DeployState.RESYNC: frozenset({DeployState.DONE, DeployState.FAILED}),
    DeployState.ROLLING_BACK: frozenset({DeployState.FAILED}),
    DeployState.DONE: frozenset(),
    DeployState.FAILED: frozenset(),
}


@dataclass
class DeploymentAttempt:
    service: str
    old_containers: list[ContainerRef]
    new_containers: list[ContainerRef] = field(default_factory=list)
    state: DeployState = DeployState.IDLE
    message: str = ""
    id: str = field(default_factory=lambda: secrets.token_hex(6))
    started_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def scale_target(self) -> int:
        return 2 * len(self.old_containers)

    @property
    def old_ids(self) -> list[str]:
        return [c.id for c in self.old_containers]

    @property
    def new_ids(self) -> list[str]:
        return [c.id for c in self.new_containers]

    def advance(self, state: DeployState, message: str = "") -> None:
        if state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {state.value} is not a valid deployment transition")
        self.state = state
        self.message = message
        self.updated_at = utc_now()


@dataclass
class DeployResult:
    service: str
    success: bool
    state: DeployState
    rolled_back: bool = False
    old_ids: list[str] = field(default_factory=list)
    new_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    message: str = ""
