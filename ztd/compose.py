from __future__ import annotations

import os
import re
import subprocess
from typing import Any, Callable

import yaml
from dotenv import dotenv_values

from .errors import ConfigError, RuntimeAdapterError


DEFAULT_FILES = ("compose.yaml", "compose.yml", "docker-compose.yml", "docker-compose.yaml")
_PROJECT_INVALID_RE = re.compile(r"[^a-z0-9_\-]")


def normalize_project_name(name: str) -> str:
    return _PROJECT_INVALID_RE.sub("", name.lower())


def read_env_file(path: str) -> dict[str, str]:
    """Parse a dotenv file the way compose does (comments, quoting, ``${VAR}`` expansion)."""
    if not os.path.isfile(path):
        raise ConfigError(f"Cannot read env file {path}: no such file")
    try:
        values = dotenv_values(path, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read env file {path}: {e}") from e
    return {key: value for key, value in values.items() if value is not None}


class ComposeProject:
    """The compose files/env files a deployment works against.

    Provides the authoritative service-name set and builds ``docker compose``
    command lines.
    """

    def __init__(
        self,
        files: list[str] | None = None,
        env_files: list[str] | None = None,
        project_name: str | None = None,
        cwd: str | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.cwd = cwd or os.getcwd()
        self.files = list(files) if files else self._default_files()
        self.env_files = list(env_files or [])
        self._explicit_project = project_name
        self._runner = runner
        self._documents: list[dict[str, Any]] | None = None

    def _default_files(self) -> list[str]:
        for name in DEFAULT_FILES:
            path = os.path.join(self.cwd, name)
            if os.path.isfile(path):
                return [path]
        raise ConfigError(f"No compose file given and none of {', '.join(DEFAULT_FILES)} found in {self.cwd}")

    def documents(self) -> list[dict[str, Any]]:
        if self._documents is not None:
            return self._documents
        docs: list[dict[str, Any]] = []
        for path in self.files:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except OSError as e:
                raise ConfigError(f"Failed to read compose file {path}: {e}") from e
            except yaml.YAMLError as e:
                raise ConfigError(f"Failed to parse compose file {path}: {e}") from e
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ConfigError(f"Compose file {path} is not a mapping")
            services = data.get("services") or {}
            if not isinstance(services, dict):
                raise ConfigError(f"'services' in {path} must be a mapping")
            docs.append(data)
        self._documents = docs
        return docs

    def service_names(self) -> frozenset[str]:
        names: set[str] = set()
        for doc in self.documents():
            names.update(str(n) for n in (doc.get("services") or {}))
        if not names:
            raise ConfigError(f"No services declared in {', '.join(self.files)}")
        return frozenset(names)

    def _env(self) -> dict[str, str]:
        env: dict[str, str] = {}
        env_files = self.env_files
        if not env_files:
            default = os.path.join(os.path.dirname(os.path.abspath(self.files[0])), ".env")
            env_files = [default] if os.path.isfile(default) else []
        for path in env_files:
            env.update(read_env_file(path))
        return env

    @property
    def project_name(self) -> str:
        """Resolve the project name the way ``docker compose`` does."""
        if self._explicit_project:
            return normalize_project_name(self._explicit_project)
        from_env = os.getenv("COMPOSE_PROJECT_NAME") or self._env().get("COMPOSE_PROJECT_NAME")
        if from_env:
            return normalize_project_name(from_env)
        name = ""
        for doc in self.documents():
            if doc.get("name"):
                name = str(doc["name"])
        if name:
            return normalize_project_name(name)
        first_dir = os.path.dirname(os.path.abspath(self.files[0]))
        return normalize_project_name(os.path.basename(first_dir))

    def command(self, *args: str) -> list[str]:
        cmd = ["docker", "compose"]
        if self._explicit_project:
            cmd += ["-p", self.project_name]
        for path in self.files:
            cmd += ["-f", path]
        for path in self.env_files:
            cmd += ["--env-file", path]
        cmd += list(args)
        return cmd

    def run(self, *args: str, capture: bool = True) -> str:
        cmd = self.command(*args)
        try:
            result = self._runner(cmd, capture_output=capture, text=True, cwd=self.cwd, check=False)
        except OSError as e:
            raise RuntimeAdapterError(f"Cannot run {' '.join(cmd)}: {e}") from e
        output = ((result.stdout or "") + (result.stderr or "")).strip() if capture else ""
        if result.returncode != 0:
            detail = f": {output}" if output else ""
            raise RuntimeAdapterError(f"'{' '.join(cmd)}' failed with exit code {result.returncode}{detail}")
        return output
