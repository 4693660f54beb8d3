from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Deployment timing (CLI flags override these)
    healthcheck_timeout_s: float = _env_float("ZTD_HEALTHCHECK_TIMEOUT_S", 60.0)
    no_healthcheck_wait_s: float = _env_float("ZTD_NO_HEALTHCHECK_WAIT_S", 10.0)
    wait_after_healthy_s: float = _env_float("ZTD_WAIT_AFTER_HEALTHY_S", 0.0)

    # Proxy
    traefik_conf: str = os.getenv("ZTD_TRAEFIK_CONF", "traefik/dynamic_conf.yml")
    proxy: str = os.getenv("ZTD_PROXY", "traefik")

    # Runtime knobs
    stop_timeout_s: int = _env_int("ZTD_STOP_TIMEOUT_S", 10)
    health_tick_s: float = _env_float("ZTD_HEALTH_TICK_S", 1.0)
    up_max_retries: int = _env_int("ZTD_UP_MAX_RETRIES", 30)
    up_retry_interval_s: float = _env_float("ZTD_UP_RETRY_INTERVAL_S", 1.0)

    # Event ledger and leases. An empty path disables persistence.
    db_path: str = os.getenv("ZTD_DB_PATH", ".ztd/ztd.db")
    lease_ttl_s: int = _env_int("ZTD_LEASE_TTL_S", 3600)
    log_stderr: bool = _env_bool("ZTD_LOG_STDERR", True)


settings = Settings()
