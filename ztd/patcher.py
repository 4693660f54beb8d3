from __future__ import annotations

import copy
import re
from typing import Any, Callable, Sequence

from . import db
from .routing import atomic_write, dump_yaml, load_document
from .runtime import short_id


URL_RE = re.compile(r"^(?P<scheme>[A-Za-z][A-Za-z0-9+.\-]*)://(?P<host>[^:/]+):(?P<port>\d+)$")
ADDRESS_RE = re.compile(r"^(?P<host>[^:/]+):(?P<port>\d+)$")


def pair_ids(old_ids: Sequence[str], new_ids: Sequence[str]) -> dict[str, str]:
    """Positional old -> new short-id mapping; the unmatched tail is dropped."""
    return {short_id(o): short_id(n) for o, n in zip(old_ids, new_ids)}


def _servers(section: Any) -> list[dict[str, Any]]:
    if not isinstance(section, dict):
        return []
    out: list[dict[str, Any]] = []
    services = section.get("services")
    if not isinstance(services, dict):
        return out
    for svc in services.values():
        if not isinstance(svc, dict):
            continue
        lb = svc.get("loadBalancer")
        if not isinstance(lb, dict):
            continue
        servers = lb.get("servers")
        if isinstance(servers, list):
            out.extend(s for s in servers if isinstance(s, dict))
    return out


def _rewrite(value: Any, pattern: re.Pattern[str], mapping: dict[str, str]) -> Any:
    if not isinstance(value, str):
        return value
    m = pattern.match(value)
    if not m:
        return value
    new_host = mapping.get(m.group("host"))
    if new_host is None:
        return value
    start, end = m.span("host")
    return value[:start] + new_host + value[end:]


def patch_document(document: dict[str, Any], old_ids: Sequence[str], new_ids: Sequence[str]) -> tuple[dict[str, Any], int]:
    """Return a copy of ``document`` with old container ids swapped for new ones.

    Only server ``url`` (``scheme://id:port``) and TCP ``address``
    (``id:port``) values change. Returns (document, number of rewrites).
    """
    out = copy.deepcopy(document)
    mapping = pair_ids(old_ids, new_ids)
    if not mapping:
        return out, 0

    changed = 0
    for server in _servers(out.get("http")):
        new = _rewrite(server.get("url"), URL_RE, mapping)
        if new != server.get("url"):
            server["url"] = new
            changed += 1
    for server in _servers(out.get("tcp")):
        new = _rewrite(server.get("address"), ADDRESS_RE, mapping)
        if new != server.get("address"):
            server["address"] = new
            changed += 1
    return out, changed


def patch_file(
    path: str,
    old_ids: Sequence[str],
    new_ids: Sequence[str],
    log: Callable[..., None] = db.log_event,
) -> int:
    """Rewrite backend addresses in the published document at ``path``.

    Raises PublishError if the document cannot be read, parsed or written.
    """
    document = load_document(path)
    patched, changed = patch_document(document, old_ids, new_ids)
    for old, new in pair_ids(old_ids, new_ids).items():
        log("INFO", f"Repointing {old} -> {new}")
    if changed:
        atomic_write(path, dump_yaml(patched, sort_keys=False))
    log("INFO", f"Updated {changed} backend address(es) in {path}")
    return changed
