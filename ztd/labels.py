"""Traefik label lookup.

Only a closed set of labels is honored. Keys are never concatenated by hand
outside this module: callers ask for ``(namespace, kind, name, field)`` and
get the value back.
"""
from __future__ import annotations

import json
from typing import Mapping

from .errors import LabelError


ENABLE = "traefik.enable"

HTTP = "http"
TCP = "tcp"

ROUTERS = "routers"
SERVICES = "services"

HEALTHCHECK_FIELDS = (
    "path",
    "interval",
    "timeout",
    "scheme",
    "mode",
    "hostname",
    "port",
    "followRedirects",
    "method",
    "status",
)

# (namespace, kind) -> field -> key suffix
_TABLE: dict[tuple[str, str], dict[str, str]] = {
    (HTTP, ROUTERS): {
        "rule": "rule",
        "entrypoints": "entrypoints",
    },
    (HTTP, SERVICES): {
        "port": "loadbalancer.server.port",
        "healthcheck": "loadbalancer.healthCheck",
        **{f"healthcheck.{f}": f"loadbalancer.healthCheck.{f}" for f in HEALTHCHECK_FIELDS},
        "healthcheck.headers": "loadbalancer.healthCheck.headers",
    },
    (TCP, ROUTERS): {
        "rule": "rule",
        "entrypoints": "entrypoints",
    },
    (TCP, SERVICES): {
        "port": "loadbalancer.server.port",
    },
}


def label_key(namespace: str, kind: str, name: str, field: str) -> str:
    try:
        suffix = _TABLE[(namespace, kind)][field]
    except KeyError:
        raise KeyError(f"unsupported traefik label: {namespace}.{kind}.<name>.{field}") from None
    return f"traefik.{namespace}.{kind}.{name}.{suffix}"


class TraefikLabels:
    """Read-only view over one container's labels for one service name."""

    def __init__(self, labels: Mapping[str, str], name: str):
        self.labels = labels
        self.name = name

    def get(self, namespace: str, kind: str, field: str, default: str = "") -> str:
        value = self.labels.get(label_key(namespace, kind, self.name, field), "")
        value = value.strip()
        return value or default

    @property
    def enabled(self) -> bool:
        return self.labels.get(ENABLE, "").strip().lower() == "true"

    def entrypoints(self, namespace: str) -> list[str]:
        raw = self.get(namespace, ROUTERS, "entrypoints")
        return [e.strip() for e in raw.split(",") if e.strip()]

    def has_healthcheck(self) -> bool:
        prefix = label_key(HTTP, SERVICES, self.name, "healthcheck")
        return any(k.startswith(prefix) for k in self.labels)

    def healthcheck(self) -> dict[str, object]:
        """Collect the non-empty health check fields.

        Headers may come as a JSON object under ``...healthCheck.headers``
        and/or as ``...healthCheck.headers.<Name>`` labels; individual
        labels override the JSON blob.
        """
        out: dict[str, object] = {}
        for f in HEALTHCHECK_FIELDS:
            value = self.get(HTTP, SERVICES, f"healthcheck.{f}")
            if value:
                out[f] = value

        headers: dict[str, str] = {}
        blob_key = label_key(HTTP, SERVICES, self.name, "healthcheck.headers")
        blob = self.labels.get(blob_key, "").strip()
        if blob:
            try:
                parsed = json.loads(blob)
            except ValueError as e:
                raise LabelError(f"{blob_key} is not valid JSON: {e}") from None
            if not isinstance(parsed, dict):
                raise LabelError(f"{blob_key} must be a JSON object")
            headers.update({str(k): str(v) for k, v in parsed.items() if str(k) and v is not None})

        header_prefix = blob_key + "."
        for key in sorted(self.labels):
            if key.startswith(header_prefix):
                header = key[len(header_prefix):]
                if header and self.labels[key]:
                    headers[header] = self.labels[key]

        if headers:
            out["headers"] = headers
        return out
