"""Configuration loader for farm."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SHELL = "/bin/bash --noprofile --norc --login"
TRANSPORTS = ("openssh", "asyncssh")


@dataclass
class Defaults:
    """SSH connection settings shared by every host."""

    user: str | None = None
    port: int | None = None
    ssh_key: Path | None = None
    connect_timeout: int = 10
    shell: str = DEFAULT_SHELL


@dataclass
class Config:
    """Main configuration for a run."""

    hosts: list[str] = field(default_factory=list)
    max_jobs: int = 3
    tick: float = 1.0
    transport: str = "openssh"
    defaults: Defaults = field(default_factory=Defaults)
    log_dir: Path | None = field(default_factory=lambda: Path("logs").resolve())
    source_path: Path | None = None  # Path to the original config file

    def validate(self) -> None:
        if self.max_jobs < 1:
            raise ValueError(f"max_jobs must be at least 1, got {self.max_jobs}")
        if self.tick <= 0:
            raise ValueError(f"tick must be positive, got {self.tick}")
        if self.transport not in TRANSPORTS:
            raise ValueError(
                f"Unknown transport '{self.transport}', expected one of: "
                f"{', '.join(TRANSPORTS)}"
            )
        if self.defaults.connect_timeout < 1:
            raise ValueError("connect_timeout must be at least 1 second")


def default_config() -> Config:
    """Configuration used when no file is given."""
    return Config()


def load_config(config_path: str | Path) -> Config:
    """Load and validate configuration from a YAML file."""
    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise ValueError("Top level of the configuration must be a mapping")

    config = _parse_config(raw)
    config.source_path = config_path
    config.validate()
    return config


def _number(raw: dict[str, Any], key: str, default: Any, kind: type) -> Any:
    """Convert a numeric setting, reporting bad values as ValueError."""
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"'{key}' must be a number, got {value!r}") from e


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    if not isinstance(defaults_raw, dict):
        raise ValueError("'defaults' must be a mapping")

    ssh_key = defaults_raw.get("ssh_key")
    return Defaults(
        user=defaults_raw.get("user"),
        port=defaults_raw.get("port"),
        ssh_key=Path(ssh_key).expanduser() if ssh_key else None,
        connect_timeout=_number(defaults_raw, "connect_timeout", 10, int),
        shell=defaults_raw.get("shell", DEFAULT_SHELL),
    )


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw YAML data into Config object."""
    defaults = _parse_defaults(raw)

    # log_dir: null disables per-host log files
    log_dir: Path | None = Path("logs")
    if "log_dir" in raw:
        log_dir = Path(raw["log_dir"]) if raw["log_dir"] else None
    if log_dir is not None:
        log_dir = log_dir.expanduser().resolve()

    hosts_raw = raw.get("hosts") or []
    if not isinstance(hosts_raw, list):
        raise ValueError("'hosts' must be a list")
    hosts = []
    for host in hosts_raw:
        if not isinstance(host, str) or not host.strip():
            raise ValueError(f"Invalid host entry: {host!r}")
        hosts.append(host.strip())

    return Config(
        hosts=hosts,
        max_jobs=_number(raw, "max_jobs", 3, int),
        tick=_number(raw, "tick", 1.0, float),
        transport=raw.get("transport", "openssh"),
        defaults=defaults,
        log_dir=log_dir,
    )
