"""Configuration for Shellbox."""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from shellbox.sandbox.executor import DEFAULT_ENGINE_TIMEOUT
from shellbox.security.containers import DEFAULT_RUNTIME, SECCOMP_DEFAULT, NetworkMode

ENV_PREFIX = "SHELLBOX_"

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be true or false, got {value!r}")


def _parse_optional_float(name: str, value: str) -> float | None:
    if value.strip().lower() in ("", "none"):
        return None
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}") from None


@dataclass
class ShellboxConfig:
    """Configuration for sandbox runs."""

    runtime: str = DEFAULT_RUNTIME
    network: str = "bridge"
    timeout: float | None = None
    seccomp: str = SECCOMP_DEFAULT
    engine_timeout: float = DEFAULT_ENGINE_TIMEOUT
    remove_container: bool = True

    def __post_init__(self) -> None:
        """Reject network names that have no mode."""
        NetworkMode.from_name(self.network)

    @property
    def network_mode(self) -> NetworkMode:
        """The configured network as a NetworkMode."""
        return NetworkMode.from_name(self.network)

    @classmethod
    def from_file(cls, path: Path | str) -> "ShellboxConfig":
        """Load config from a YAML or JSON file."""
        return cls(**cls._read_file(Path(path)))

    @classmethod
    def from_env(cls) -> "ShellboxConfig":
        """Load config from SHELLBOX_* environment variables."""
        return cls(**cls._read_env())

    @classmethod
    def load(cls, config_path: Path | str | None = None, **overrides: Any) -> "ShellboxConfig":
        """
        Load config with hierarchy: defaults < file < env < kwargs.

        Args:
            config_path: Optional YAML or JSON config file
            **overrides: Values that take precedence over everything else;
                None values are ignored
        """
        values = asdict(cls())
        if config_path is not None:
            values.update(cls._read_file(Path(config_path)))
        values.update(cls._read_env())
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @staticmethod
    def _read_file(path: Path) -> dict[str, Any]:
        text = path.read_text()
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        known = {f.name for f in fields(ShellboxConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        return data

    @staticmethod
    def _read_env() -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name in ("runtime", "network", "seccomp"):
            env_var = ENV_PREFIX + name.upper()
            if env_var in os.environ:
                values[name] = os.environ[env_var]
        env_var = ENV_PREFIX + "TIMEOUT"
        if env_var in os.environ:
            values["timeout"] = _parse_optional_float(env_var, os.environ[env_var])
        env_var = ENV_PREFIX + "ENGINE_TIMEOUT"
        if env_var in os.environ:
            engine_timeout = _parse_optional_float(env_var, os.environ[env_var])
            if engine_timeout is None:
                raise ValueError(f"{env_var} must be a number of seconds")
            values["engine_timeout"] = engine_timeout
        env_var = ENV_PREFIX + "REMOVE_CONTAINER"
        if env_var in os.environ:
            values["remove_container"] = _parse_bool(env_var, os.environ[env_var])
        return values
