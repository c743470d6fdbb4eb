"""Configuration loader for gsh."""

from __future__ import annotations

import getpass
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError, HostsError
from .executor import OutputMode

DEFAULTS_FILE = "config.yaml"


def gsh_dir() -> Path:
    """Directory holding the defaults file and host groups."""
    return Path(os.environ.get("GSH_DIR", "~/.gsh")).expanduser()


@dataclass
class Defaults:
    """Default values that command-line flags can override."""

    user: str | None = None
    timeout: float = 90
    buffer: bool = False
    port: int = 22
    known_hosts: str | None = None
    log_level: str = "WARNING"


@dataclass
class Config:
    """Everything one batch needs, apart from credentials."""

    hosts: list[str]
    command: str
    user: str
    timeout: float = 90
    buffer: bool = False
    port: int = 22
    known_hosts: str | None = None
    defaults: Defaults = field(default_factory=Defaults)

    @property
    def mode(self) -> OutputMode:
        return OutputMode.BUFFER if self.buffer else OutputMode.STREAM


def load_defaults(base_dir: Path | None = None) -> Defaults:
    """Load the optional defaults file. A missing file yields built-in defaults."""
    path = (base_dir or gsh_dir()) / DEFAULTS_FILE
    if not path.exists():
        return Defaults()

    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid defaults file {path}: {e}") from e

    return _parse_defaults(raw or {}, path)


def _parse_defaults(raw: Any, path: Path) -> Defaults:
    """Parse the defaults mapping, rejecting unknown keys and bad types."""
    if not isinstance(raw, dict):
        raise ConfigError(f"Defaults file {path} must contain a mapping")

    known = {f.name for f in fields(Defaults)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {', '.join(unknown)}")

    timeout = raw.get("timeout", 90)
    # bool is an int subclass; a boolean timeout is a typo, not a duration
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(f"'timeout' in {path} must be a positive number")

    port = raw.get("port", 22)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(f"'port' in {path} must be a valid TCP port")

    buffer = raw.get("buffer", False)
    if not isinstance(buffer, bool):
        raise ConfigError(f"'buffer' in {path} must be true or false")

    user = raw.get("user")
    known_hosts = raw.get("known_hosts")
    for key, value in (("user", user), ("known_hosts", known_hosts)):
        if value is not None and not isinstance(value, str):
            raise ConfigError(f"'{key}' in {path} must be a string")

    return Defaults(
        user=user,
        timeout=timeout,
        buffer=buffer,
        port=port,
        known_hosts=str(Path(known_hosts).expanduser()) if known_hosts else None,
        log_level=str(raw.get("log_level", "WARNING")).upper(),
    )


def parse_hosts_arg(hosts_arg: str) -> list[str]:
    """Split a comma separated host list, dropping empty entries."""
    return [host.strip() for host in hosts_arg.split(",") if host.strip()]


def load_hosts_file(name: str, base_dir: Path | None = None) -> list[str]:
    """Read a host group: one host per line, blanks and '#' comments ignored."""
    path = (base_dir or gsh_dir()) / name
    try:
        text = path.read_text()
    except OSError as e:
        raise HostsError(f"Cannot read host group '{name}': {e}") from e

    hosts = []
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            hosts.append(line)
    return hosts


def local_username() -> str:
    """Name of the user running gsh."""
    try:
        return getpass.getuser()
    except (KeyError, OSError) as e:
        raise ConfigError(f"Cannot determine local username: {e}") from e


def build_config(
    command: list[str],
    hosts_arg: str = "",
    group: str | None = None,
    user: str | None = None,
    timeout: float | None = None,
    buffer: bool = False,
    defaults: Defaults | None = None,
    base_dir: Path | None = None,
) -> Config:
    """Resolve command-line values against the defaults into a Config."""
    if defaults is None:
        defaults = load_defaults(base_dir)

    # A host group wins over --hosts
    if group:
        hosts = load_hosts_file(group, base_dir)
    else:
        hosts = parse_hosts_arg(hosts_arg)

    if not hosts:
        raise HostsError("No hosts to run on")

    if timeout is not None and timeout <= 0:
        raise ConfigError("Timeout must be a positive number of seconds")

    return Config(
        hosts=hosts,
        command=" ".join(command),
        user=user or defaults.user or local_username(),
        timeout=timeout if timeout is not None else defaults.timeout,
        buffer=buffer or defaults.buffer,
        port=defaults.port,
        known_hosts=defaults.known_hosts,
        defaults=defaults,
    )
