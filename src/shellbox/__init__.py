"""Shellbox: run shell commands in disposable sandboxed containers."""

from shellbox.config import ShellboxConfig
from shellbox.exceptions import (
    BuildContextError,
    EventStreamError,
    ExecutionError,
    ExecutionTimeoutError,
    ImageBuildError,
    RunCancelledError,
    ShellboxError,
)
from shellbox.models import DirectoryFileSet, ExecutionResult, File, FileSet
from shellbox.sandbox import NO_TIMEOUT, Executor
from shellbox.security import (
    SECCOMP_DEFAULT,
    SECCOMP_UNCONFINED,
    NetworkMode,
    PathTraversalError,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Main API
    "Executor",
    "ShellboxConfig",
    "NO_TIMEOUT",
    "NetworkMode",
    "SECCOMP_DEFAULT",
    "SECCOMP_UNCONFINED",
    # Files
    "File",
    "FileSet",
    "DirectoryFileSet",
    # Results
    "ExecutionResult",
    # Exceptions
    "ShellboxError",
    "BuildContextError",
    "PathTraversalError",
    "ImageBuildError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "RunCancelledError",
    "EventStreamError",
]
