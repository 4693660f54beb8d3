from __future__ import annotations

import time
from typing import Callable, Sequence

from . import db
from .errors import HealthGateTimeout
from .runtime import ContainerRuntime, short_id


def pending_containers(runtime: ContainerRuntime, container_ids: Sequence[str]) -> list[str]:
    """Query every container once; return the ids that are not ready yet."""
    pending: list[str] = []
    for cid in container_ids:
        status = runtime.health_status(cid)
        if not status.ready:
            pending.append(cid)
    return pending


def wait_for_healthy(
    runtime: ContainerRuntime,
    container_ids: Sequence[str],
    timeout_s: float,
    tick_s: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    service_name: str | None = None,
) -> None:
    """Block until all containers are healthy (or have no health check).

    Raises HealthGateTimeout once the deadline has passed without every
    container ready. Runtime errors while inspecting propagate.
    """
    ids = list(container_ids)
    db.log_event(
        "INFO",
        f"Waiting {timeout_s:g}s for containers to become healthy: {', '.join(short_id(i) for i in ids)}",
        service_name=service_name,
    )
    deadline = clock() + timeout_s
    while True:
        pending = pending_containers(runtime, ids)
        if not pending:
            db.log_event("INFO", "All containers are healthy", service_name=service_name)
            return
        if clock() >= deadline:
            raise HealthGateTimeout(pending, timeout_s)
        db.log_event(
            "INFO",
            f"Not healthy yet: {', '.join(short_id(i) for i in pending)}",
            service_name=service_name,
        )
        sleep(tick_s)
