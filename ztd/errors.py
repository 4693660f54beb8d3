from __future__ import annotations


class ZtdError(Exception):
    """Base class for every error the CLI turns into exit code 1."""


class ConfigError(ZtdError):
    pass


class RuntimeAdapterError(ZtdError):
    pass


class HealthGateTimeout(ZtdError):
    def __init__(self, pending: list[str], timeout_s: float):
        self.pending = list(pending)
        self.timeout_s = timeout_s
        short = ", ".join(p[:12] for p in self.pending)
        super().__init__(f"Timed out after {timeout_s:g}s waiting for containers to become healthy: {short}")


class LabelError(ZtdError):
    pass


class PublishError(ZtdError):
    pass


class LeaseHeldError(ZtdError):
    pass


class InvalidTransition(ZtdError):
    pass


class LedgerError(ZtdError):
    pass
