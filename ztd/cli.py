from __future__ import annotations

import argparse
import json
import os
import sys

from . import __version__, db
from .compose import ComposeProject
from .deployer import DeployOptions, Deployer
from .docker_ops import DockerRuntime
from .errors import ConfigError, ZtdError
from .settings import settings


SUPPORTED_PROXIES = ("traefik",)
KNOWN_PROXIES = ("traefik", "nginx-proxy")

PLUGIN_METADATA = {
    "SchemaVersion": "0.1.0",
    "Vendor": "ztd",
    "Version": f"v{__version__}",
    "ShortDescription": "Docker plugin for docker-compose update with real zero time deployment.",
}

EPILOG = """Examples:
  docker ztd --timeout 120 -f docker-compose.yml api
  docker ztd -t 120 -f docker-compose.yml -e .env api
  docker ztd --wait-after-healthy 30 -f docker-compose.yml -e .env api
  docker ztd --traefik-conf custom/traefik.yml -f docker-compose.yml api
  docker ztd -f docker-compose.yml up -d
"""


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


class _Parser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _seconds(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {raw!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"seconds must be >= 0, got {raw}")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = _Parser(
        prog="docker ztd",
        description="Zero Time Deployment plugin for Docker Compose",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("service", help="Service to update, or 'up' to bring up the whole stack")
    p.add_argument(
        "-t", "--timeout", type=_seconds, default=settings.healthcheck_timeout_s, metavar="SECONDS",
        help="Healthcheck timeout (default: %(default)g)",
    )
    p.add_argument(
        "-w", "--wait", type=_seconds, default=settings.no_healthcheck_wait_s, metavar="SECONDS",
        help="Wait N seconds before stopping the old containers (default: %(default)g)",
    )
    p.add_argument(
        "-wa", "--wait-after-healthy", type=_seconds, default=settings.wait_after_healthy_s, metavar="SECONDS",
        help="When the healthcheck succeeds, wait N more seconds before stopping the old containers (default: %(default)g)",
    )
    p.add_argument(
        "-tc", "--traefik-conf", default=settings.traefik_conf, metavar="FILE",
        help="Traefik dynamic configuration file (default: %(default)s)",
    )
    p.add_argument(
        "-p", "--proxy", default=settings.proxy, metavar="TYPE",
        help="Proxy type: traefik, nginx-proxy (not implemented yet) (default: %(default)s)",
    )
    p.add_argument("-f", "--file", action="append", default=[], metavar="FILE", help="Compose file (repeatable)")
    p.add_argument("-e", "--env-file", action="append", default=[], metavar="FILE", help="Environment file (repeatable)")
    p.add_argument("-d", "--detach", action="store_true", help="With 'up': do not follow logs afterwards")
    return p


def _check_proxy(proxy: str) -> None:
    if proxy not in KNOWN_PROXIES:
        raise ConfigError(f"Invalid proxy type: {proxy}. Must be either 'traefik' or 'nginx-proxy'")
    if proxy not in SUPPORTED_PROXIES:
        raise ConfigError(f"Proxy type '{proxy}' is not supported yet")


def _strip_plugin_prefix(argv: list[str], prog: str) -> list[str]:
    # The docker CLI runs plugins as `docker-ztd ztd [args...]`.
    if argv and argv[0] == "ztd" and os.path.basename(prog).startswith("docker-"):
        return argv[1:]
    return argv


def main(argv: list[str] | None = None, prog: str | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    prog = prog if prog is not None else sys.argv[0]

    if argv and argv[0] == "docker-cli-plugin-metadata":
        _print(PLUGIN_METADATA)
        return 0

    argv = _strip_plugin_prefix(argv, prog)
    args = build_parser().parse_args(argv)

    service = args.service.strip()
    detach = args.detach
    if service == "up -d":
        service, detach = "up", True

    db.init_db()
    try:
        if detach and service != "up":
            raise ConfigError("-d/--detach is only valid with 'up'")
        _check_proxy(args.proxy)

        compose = ComposeProject(files=args.file, env_files=args.env_file)
        service_names = compose.service_names()
        options = DeployOptions(
            timeout_s=args.timeout,
            wait_s=args.wait,
            wait_after_healthy_s=args.wait_after_healthy,
        )
        deployer = Deployer(DockerRuntime(compose), service_names, args.traefik_conf, options)

        if service == "up":
            result = deployer.converge(detach=detach)
        else:
            result = deployer.update(service)
    except ZtdError as e:
        db.log_event("ERROR", str(e), service_name=None if service == "up" else service)
        return 1

    if not result.success:
        db.log_event("ERROR", result.message or "Deployment failed", service_name=result.service)
        return 1
    if result.warnings:
        db.log_event("WARN", f"Completed with {len(result.warnings)} warning(s)", service_name=result.service)
    db.log_event("INFO", result.message or "Done", service_name=result.service)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
