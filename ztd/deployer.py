from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterable

from . import db
from .errors import ConfigError, HealthGateTimeout, PublishError, RuntimeAdapterError, ZtdError
from .health import wait_for_healthy
from .patcher import patch_file
from .runtime import ContainerRef, ContainerRuntime, DeploymentAttempt, DeployResult, DeployState, ordered, short_id
from .settings import settings
from .synthesizer import publish_synthesized


@dataclass
class DeployOptions:
    timeout_s: float = settings.healthcheck_timeout_s
    wait_s: float = settings.no_healthcheck_wait_s
    wait_after_healthy_s: float = settings.wait_after_healthy_s
    stop_timeout_s: int = settings.stop_timeout_s
    health_tick_s: float = settings.health_tick_s
    up_max_retries: int = settings.up_max_retries
    up_retry_interval_s: float = settings.up_retry_interval_s
    lease_ttl_s: float = settings.lease_ttl_s


def _ids(containers: Iterable[ContainerRef]) -> str:
    return ", ".join(c.short_id for c in containers) or "-"


class Deployer:
    """Zero-downtime rolling update of one compose service behind Traefik.

    scale to 2x -> wait for the new replicas to be healthy -> repoint the
    routing document -> drain -> remove the old replicas -> resynthesize.
    A health timeout removes the new replicas and leaves the old ones serving.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        service_names: Iterable[str],
        conf_path: str,
        options: DeployOptions | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runtime = runtime
        self.service_names = frozenset(service_names)
        self.conf_path = conf_path
        self.options = options or DeployOptions()
        self._sleep = sleep
        self._clock = clock

    # -- rolling update ---------------------------------------------------

    def update(self, service: str) -> DeployResult:
        if service not in self.service_names:
            raise ConfigError(f"Service '{service}' not found in compose files ({', '.join(sorted(self.service_names))})")

        with db.service_lease(service, self.options.lease_ttl_s):
            old = ordered(self.runtime.list_containers(service))
            if not old:
                db.log_event("INFO", "Service is not running; starting it", service_name=service)
                return self._start_fresh(service)
            return self._rolling_update(service, old)

    def _advance(self, attempt: DeploymentAttempt, state: DeployState, message: str, level: str = "INFO") -> None:
        attempt.advance(state, message)
        db.upsert_deployment(attempt)
        db.log_event(level, f"[{state.value}] {message}", service_name=attempt.service, attempt_id=attempt.id)

    def _rolling_update(self, service: str, old: list[ContainerRef]) -> DeployResult:
        attempt = DeploymentAttempt(service=service, old_containers=old)
        db.upsert_deployment(attempt)
        warnings: list[str] = []

        try:
            self._advance(attempt, DeployState.SCALING, f"Scaling to {attempt.scale_target} replicas (old: {_ids(old)})")
            attempt.new_containers = self._scale_up(attempt)

            self._advance(attempt, DeployState.HEALTH_GATING, f"Health gating new replicas: {_ids(attempt.new_containers)}")
            try:
                wait_for_healthy(
                    self.runtime,
                    attempt.new_ids,
                    self.options.timeout_s,
                    tick_s=self.options.health_tick_s,
                    clock=self._clock,
                    sleep=self._sleep,
                    service_name=service,
                )
            except HealthGateTimeout as e:
                return self._rollback(attempt, e)

            self._advance(attempt, DeployState.ROUTING_SWAP, "Repointing Traefik to the new replicas")
            try:
                patch_file(self.conf_path, attempt.old_ids, attempt.new_ids)
            except PublishError as e:
                warnings.append(str(e))
                db.log_event("WARN", f"Failed to update Traefik configuration: {e}", service_name=service)

            self._advance(attempt, DeployState.DRAINING, "Draining old replicas")
            self._drain(service)

            self._advance(attempt, DeployState.CLEANUP, f"Stopping and removing old replicas: {_ids(old)}")
            self._stop_and_remove(attempt.old_ids)

            self._advance(attempt, DeployState.RESYNC, "Regenerating Traefik configuration")
            try:
                publish_synthesized(self.runtime, self.service_names, self.conf_path)
            except PublishError as e:
                warnings.append(str(e))
                db.log_event("WARN", f"Failed to regenerate Traefik configuration: {e}", service_name=service)

            self._advance(attempt, DeployState.DONE, f"Deployed {len(attempt.new_containers)} new replica(s)")
        except ZtdError as e:
            if not attempt.state.terminal:
                self._advance(attempt, DeployState.FAILED, str(e), level="ERROR")
            raise

        return DeployResult(
            service=service,
            success=True,
            state=attempt.state,
            old_ids=attempt.old_ids,
            new_ids=attempt.new_ids,
            warnings=warnings,
            message=attempt.message,
        )

    def _scale_up(self, attempt: DeploymentAttempt) -> list[ContainerRef]:
        self.runtime.scale(attempt.service, attempt.scale_target)
        old_ids = set(attempt.old_ids)
        new = ordered([c for c in self.runtime.list_containers(attempt.service) if c.id not in old_ids])
        if not new:
            raise RuntimeAdapterError(f"Scaling {attempt.service} to {attempt.scale_target} produced no new containers")
        if len(new) != len(attempt.old_containers):
            db.log_event(
                "WARN",
                f"Expected {len(attempt.old_containers)} new replica(s), got {len(new)}",
                service_name=attempt.service,
                attempt_id=attempt.id,
            )
        return new

    def _drain(self, service: str) -> None:
        if self.options.wait_after_healthy_s > 0:
            db.log_event(
                "INFO", f"Waiting for healthy containers to settle down ({self.options.wait_after_healthy_s:g}s)", service_name=service
            )
            self._sleep(self.options.wait_after_healthy_s)
        db.log_event("INFO", f"Waiting {self.options.wait_s:g}s before stopping old containers", service_name=service)
        self._sleep(self.options.wait_s)

    def _stop_and_remove(self, container_ids: Iterable[str]) -> None:
        for cid in container_ids:
            db.log_event("INFO", f"Stopping container {short_id(cid)}")
            self.runtime.stop(cid, self.options.stop_timeout_s)
            db.log_event("INFO", f"Removing container {short_id(cid)}")
            self.runtime.remove(cid)

    def _rollback(self, attempt: DeploymentAttempt, cause: HealthGateTimeout) -> DeployResult:
        self._advance(attempt, DeployState.ROLLING_BACK, f"{cause}. Rolling back.", level="ERROR")
        for cid in attempt.new_ids:
            # Keep going: a half-started replica must not stop the others from being removed.
            try:
                self.runtime.stop(cid, self.options.stop_timeout_s)
            except RuntimeAdapterError as e:
                db.log_event("ERROR", f"Rollback: {e}", service_name=attempt.service, attempt_id=attempt.id)
            try:
                self.runtime.remove(cid)
            except RuntimeAdapterError as e:
                db.log_event("ERROR", f"Rollback: {e}", service_name=attempt.service, attempt_id=attempt.id)
        self._advance(attempt, DeployState.FAILED, f"Rolled back; old replicas still serving: {_ids(attempt.old_containers)}", level="ERROR")
        return DeployResult(
            service=attempt.service,
            success=False,
            state=attempt.state,
            rolled_back=True,
            old_ids=attempt.old_ids,
            new_ids=attempt.new_ids,
            message=str(cause),
        )

    # -- start / converge -------------------------------------------------

    def _start_fresh(self, service: str) -> DeployResult:
        self.runtime.start_service(service)
        warnings = self._resync(service)
        started = [c.id for c in ordered(self.runtime.list_containers(service))]
        return DeployResult(
            service=service,
            success=True,
            state=DeployState.DONE,
            new_ids=started,
            warnings=warnings,
            message=f"Started {service}",
        )

    def _resync(self, service: str | None = None) -> list[str]:
        try:
            publish_synthesized(self.runtime, self.service_names, self.conf_path)
        except PublishError as e:
            db.log_event("WARN", f"Failed to generate Traefik configuration: {e}", service_name=service)
            return [str(e)]
        return []

    def wait_until_running(self) -> bool:
        for attempt in range(1, self.options.up_max_retries + 1):
            waiting = [c for c in self.runtime.list_containers() if not c.running]
            if not waiting:
                db.log_event("INFO", "All containers are running")
                return True
            db.log_event(
                "INFO",
                f"Waiting for containers to be ready (attempt {attempt}/{self.options.up_max_retries}): {_ids(waiting)}",
            )
            if attempt < self.options.up_max_retries:
                self._sleep(self.options.up_retry_interval_s)
        db.log_event("WARN", "Not every container reached the running state; generating configuration anyway")
        return False

    def converge(self, detach: bool = True) -> DeployResult:
        """Bring the whole stack up and synthesize routing once. No rollback."""
        db.log_event("INFO", f"Bringing up the stack (detached: {detach})")
        self.runtime.up()
        self.wait_until_running()
        warnings = self._resync()
        if not detach:
            db.log_event("INFO", "Showing container logs...")
            self.runtime.follow_logs()
        return DeployResult(service="up", success=True, state=DeployState.DONE, warnings=warnings, message="Stack is up")
