"""Spec file and user configuration loading for sshtail."""

from __future__ import annotations

import getpass
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import SpecError

DEFAULT_SSH_PORT = 22
DEFAULT_KEY_PATH = "~/.ssh/id_rsa"
SPEC_SUFFIX = ".yml"
USER_CONFIG_NAME = ".sshtail.yaml"


class HostKeyPolicy(Enum):
    """How remote host identities are verified."""

    KNOWN_HOSTS = "known_hosts"
    SKIP = "skip"


@dataclass(frozen=True)
class HostEndpoint:
    """Validated connection parameters for a single host."""

    host_tag: str
    hostname: str
    port: int
    username: str
    remote_file: str

    @property
    def target(self) -> str:
        return f"{self.hostname}:{self.port}"


@dataclass
class SpecData:
    """Hosts to tail and the keys used to reach them."""

    hosts: list[HostEndpoint]
    keys: dict[str, Path] = field(default_factory=dict)
    log_dir: Path | None = None
    source_path: Path | None = None  # Path the spec was loaded from

    def key_path_for(self, host_tag: str, default_key: Path | None = None) -> Path:
        """Resolve the private key path for a host.

        A per-host entry in the ``keys`` section wins, then the user's default
        key (``sshtail usekey``), then ``~/.ssh/id_rsa``.
        """
        if host_tag in self.keys:
            return self.keys[host_tag]
        if default_key is not None:
            return default_key
        return Path(DEFAULT_KEY_PATH).expanduser()


@dataclass
class TailOptions:
    """Runtime options passed into the tailing core."""

    host_key_policy: HostKeyPolicy = HostKeyPolicy.KNOWN_HOSTS
    known_hosts: Path | None = None  # None means ~/.ssh/known_hosts
    connect_timeout: float | None = None
    log_dir: Path | None = None
    install_signal_handlers: bool = True


@dataclass
class UserConfig:
    """Contents of the per-user ``~/.sshtail.yaml`` file."""

    default_key: Path | None = None


def load_spec(spec_path: str | Path) -> SpecData:
    """Load and validate a spec file."""
    spec_path = Path(spec_path).expanduser().resolve()

    if not spec_path.exists():
        raise SpecError(f"Spec file not found: {spec_path}")

    try:
        with open(spec_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SpecError(f"Unable to parse spec file '{spec_path}': {e}") from e

    spec = parse_spec(raw)
    spec.source_path = spec_path
    return spec


def parse_spec(raw: Any) -> SpecData:
    """Parse raw YAML data into a SpecData object."""
    if not isinstance(raw, dict):
        raise SpecError("Spec file must contain a mapping with a 'hosts' section")

    hosts_raw = raw.get("hosts") or {}
    if not isinstance(hosts_raw, dict):
        raise SpecError("'hosts' must be a mapping of host tags to host entries")
    if not hosts_raw:
        raise SpecError("No hosts defined in spec file")

    hosts = [_parse_host(str(tag), host_raw) for tag, host_raw in hosts_raw.items()]
    keys = _parse_keys(raw.get("keys") or {})

    log_dir = raw.get("log_dir")
    return SpecData(
        hosts=hosts,
        keys=keys,
        log_dir=Path(log_dir).expanduser().resolve() if log_dir else None,
    )


def _parse_host(host_tag: str, host_raw: Any) -> HostEndpoint:
    """Parse and validate a single host entry, filling in defaults."""
    if not isinstance(host_raw, dict):
        raise SpecError(f"Host '{host_tag}' must be a mapping")

    hostname = str(host_raw.get("hostname") or "").strip()
    if not hostname:
        raise SpecError(f"Host '{host_tag}' must have a 'hostname' field")

    remote_file = str(host_raw.get("file") or "").strip()
    if not remote_file:
        raise SpecError(f"Host '{host_tag}' must have a 'file' field")

    # Missing or zero port falls back to the default SSH port
    port = host_raw.get("port") or DEFAULT_SSH_PORT
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise SpecError(f"Host '{host_tag}' has an invalid port: {port!r}")

    username = str(host_raw.get("username") or "").strip() or getpass.getuser()

    return HostEndpoint(
        host_tag=host_tag,
        hostname=hostname,
        port=port,
        username=username,
        remote_file=remote_file,
    )


def _parse_keys(keys_raw: Any) -> dict[str, Path]:
    """Parse the optional keys section into host tag -> key path."""
    if not isinstance(keys_raw, dict):
        raise SpecError("'keys' must be a mapping of host tags to key entries")

    keys = {}
    for tag, key_raw in keys_raw.items():
        path = key_raw.get("path") if isinstance(key_raw, dict) else None
        if not path:
            raise SpecError(f"Key entry for '{tag}' must have a 'path' field")
        keys[str(tag)] = Path(path).expanduser()
    return keys


def user_config_path() -> Path:
    return Path.home() / USER_CONFIG_NAME


def read_user_config(config_path: str | Path | None = None) -> UserConfig:
    """Read the user config file. A missing file yields an empty config."""
    config_path = Path(config_path) if config_path else user_config_path()
    if not config_path.exists():
        return UserConfig()

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise SpecError(f"Unable to parse config file '{config_path}': {e}") from e

    key_raw = raw.get("default_key") if isinstance(raw, dict) else None
    path = key_raw.get("path") if isinstance(key_raw, dict) else None
    return UserConfig(default_key=Path(path).expanduser() if path else None)


def write_default_key(key_path: str, config_path: str | Path | None = None) -> Path:
    """Persist ``key_path`` as the default key, keeping any other settings."""
    config_path = Path(config_path) if config_path else user_config_path()

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f)
            if isinstance(loaded, dict):
                raw = loaded
        except yaml.YAMLError:
            # Unreadable config is replaced
            raw = {}

    raw["default_key"] = {"path": key_path}
    with open(config_path, "w") as f:
        yaml.safe_dump(raw, f, default_flow_style=False)
    return config_path


def spec_filename(name: str) -> str:
    """Normalize a spec name so it carries exactly one ``.yml`` suffix."""
    return name.removesuffix(SPEC_SUFFIX) + SPEC_SUFFIX


def new_spec_template(with_comments: bool = False, exclude_keys: bool = False) -> str:
    """Render a two-host spec template."""

    def comment(text: str, indent: int = 0) -> list[str]:
        return [" " * indent + f"# {text}"] if with_comments else []

    lines: list[str] = []
    lines += comment("Hosts and files to tail")
    lines += [
        "hosts:",
        "  host1:",
        "    hostname: remote-host-1",
    ]
    lines += comment("Excluding the username here will default it to the current user name", 4)
    lines += ["    file: /var/log/syslog"]
    lines += comment("Default SSH port", 4)
    lines += [
        "    port: 22",
        "  host2:",
        "    hostname: remote-host-2",
        "    username: me",
        "    file: /var/log/syslog",
        "    port: 22",
    ]

    if not exclude_keys:
        lines += comment("This section is optional for portability")
        lines += ["keys:", "  host1:"]
        lines += comment("Defaults to this value", 4)
        lines += [f"    path: {DEFAULT_KEY_PATH}", "  host2:"]
        lines += comment(
            "If all of these values are the same, then 'sshtail usekey' may be more convenient.",
            4,
        )
        lines += [f"    path: {DEFAULT_KEY_PATH}"]

    return "\n".join(lines) + "\n"
