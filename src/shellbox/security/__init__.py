"""Security utilities for Shellbox."""

from shellbox.security.containers import (
    DEFAULT_RUNTIME,
    SECCOMP_DEFAULT,
    SECCOMP_UNCONFINED,
    UNCONFINED_PROFILE_NAME,
    ContainerSecurityConfig,
    NetworkMode,
    network_mode,
)
from shellbox.security.paths import PathTraversalError, normalize_archive_path

__all__ = [
    "ContainerSecurityConfig",
    "DEFAULT_RUNTIME",
    "NetworkMode",
    "network_mode",
    "PathTraversalError",
    "normalize_archive_path",
    "SECCOMP_DEFAULT",
    "SECCOMP_UNCONFINED",
    "UNCONFINED_PROFILE_NAME",
]
