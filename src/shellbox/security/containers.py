"""Container security configuration."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

# gVisor user-space kernel
DEFAULT_RUNTIME = "runsc"

# Seccomp profile selectors
SECCOMP_DEFAULT = ""
SECCOMP_UNCONFINED = "unconfined"
UNCONFINED_PROFILE_NAME = "unconfined.json"


class NetworkMode(IntEnum):
    """Network policy for a sandbox container."""

    # Isolated from the host; other containers reachable only by IP
    BRIDGE = 0
    # Loopback only
    NONE = 1

    @classmethod
    def from_name(cls, name: str) -> "NetworkMode":
        """Look up a mode by its name, e.g. from a config file."""
        try:
            return cls[name.upper()]
        except KeyError:
            valid = ", ".join(m.name.lower() for m in cls)
            raise ValueError(f"Unknown network mode {name!r} (expected one of: {valid})") from None


_ENGINE_NETWORK_MODES = {
    NetworkMode.BRIDGE: "bridge",
    NetworkMode.NONE: "none",
}


def network_mode(mode: NetworkMode) -> str:
    """Map a NetworkMode to the engine's native network mode name.

    An unmapped value means the caller built an invalid configuration, so
    this fails with an AssertionError rather than a recoverable error.
    """
    try:
        return _ENGINE_NETWORK_MODES[mode]
    except KeyError:
        raise AssertionError(f"({mode!r}) doesn't have a corresponding network mode") from None


@dataclass
class ContainerSecurityConfig:
    """Security configuration for a sandbox container."""

    runtime: str = DEFAULT_RUNTIME
    network: NetworkMode = NetworkMode.BRIDGE
    seccomp_profile: str | None = None
    security_opt: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Reference the seccomp profile, if any, in the security options."""
        if self.seccomp_profile:
            self.security_opt = [*self.security_opt, f"seccomp={self.seccomp_profile}"]

    def to_host_config_kwargs(self) -> dict[str, Any]:
        """Convert to kwargs for docker-py APIClient.create_host_config()."""
        kwargs: dict[str, Any] = {
            "runtime": self.runtime,
            "network_mode": network_mode(self.network),
        }
        if self.security_opt:
            kwargs["security_opt"] = self.security_opt
        return kwargs
