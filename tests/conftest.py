import hashlib

import pytest

from ztd import db
from ztd.errors import RuntimeAdapterError
from ztd.runtime import ContainerRef, HealthStatus
from ztd.settings import Settings


def make_id(service: str, number: int, salt: int = 0) -> str:
    return hashlib.sha256(f"{service}-{number}-{salt}".encode()).hexdigest()


def traefik_labels(service: str, rule: str = "Host(`a.com`)", **extra: str) -> dict:
    labels = {"traefik.enable": "true", f"traefik.http.routers.{service}.rule": rule}
    labels.update(extra)
    return labels


class FakeRuntime:
    """In-memory stand-in for DockerRuntime.

    ``health`` maps a container id to either a HealthStatus or a list of
    statuses consumed one per query (the last one sticks).
    """

    def __init__(self):
        self.containers: dict[str, ContainerRef] = {}
        self.health: dict[str, object] = {}
        self.service_labels: dict[str, dict] = {}
        self.new_health: object = HealthStatus.HEALTHY
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}
        self.scale_creates: int | None = None
        self._numbers: dict[str, int] = {}
        self._salt = 0

    def add(self, service: str, count: int = 1, labels: dict | None = None, health=HealthStatus.NONE, state: str = "running"):
        if labels is not None:
            self.service_labels[service] = labels
        created = []
        for _ in range(count):
            number = self._numbers.get(service, 0) + 1
            self._numbers[service] = number
            self._salt += 1
            ref = ContainerRef(
                id=make_id(service, number, self._salt),
                service=service,
                number=number,
                project="demo",
                state=state,
                labels=dict(self.service_labels.get(service, {})),
            )
            self.containers[ref.id] = ref
            self.health[ref.id] = health
            created.append(ref)
        return created

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise self.fail_on[op]

    def list_containers(self, service=None):
        self.calls.append(("list", service))
        self._maybe_fail("list")
        return [c for c in self.containers.values() if service is None or c.service == service]

    def health_status(self, container_id):
        self.calls.append(("health", container_id))
        self._maybe_fail("health")
        if container_id not in self.containers:
            raise RuntimeAdapterError(f"Container {container_id[:12]} disappeared")
        status = self.health[container_id]
        if isinstance(status, list):
            return status.pop(0) if len(status) > 1 else status[0]
        return status

    def scale(self, service, replicas):
        self.calls.append(("scale", service, replicas))
        self._maybe_fail("scale")
        existing = len([c for c in self.containers.values() if c.service == service])
        count = self.scale_creates if self.scale_creates is not None else replicas - existing
        health = self.new_health
        for ref in self.add(service, count):
            self.health[ref.id] = list(health) if isinstance(health, list) else health

    def start_service(self, service):
        self.calls.append(("start_service", service))
        self._maybe_fail("start_service")
        if not any(c.service == service for c in self.containers.values()):
            self.add(service, 1)

    def up(self):
        self.calls.append(("up",))
        self._maybe_fail("up")

    def stop(self, container_id, timeout_s):
        self.calls.append(("stop", container_id, timeout_s))
        self._maybe_fail("stop")
        ref = self.containers[container_id]
        self.containers[container_id] = ContainerRef(
            id=ref.id, service=ref.service, number=ref.number, project=ref.project,
            state="exited", health=ref.health, labels=ref.labels,
        )

    def remove(self, container_id):
        self.calls.append(("remove", container_id))
        self._maybe_fail("remove")
        self.containers.pop(container_id, None)

    def follow_logs(self):
        self.calls.append(("logs",))

    def ops(self, name):
        return [c for c in self.calls if c[0] == name]


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Point the event ledger at a throwaway sqlite file and keep stderr quiet."""
    test_settings = Settings(db_path=str(tmp_path / "ledger" / "ztd.db"), log_stderr=False)
    monkeypatch.setattr(db, "settings", test_settings)
    return test_settings


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def clock():
    return FakeClock()
