"""Shellbox domain exceptions."""


class ShellboxError(Exception):
    """Base exception for all Shellbox errors."""


class BuildContextError(ShellboxError):
    """Raised when a file cannot be read into the build context."""

    def __init__(self, path: str, cause: Exception) -> None:
        self.path = path
        super().__init__(f"Failed to add '{path}' to build context: {cause}")
        self.__cause__ = cause


class ImageBuildError(ShellboxError):
    """Raised when the engine reports an error while building the image."""

    def __init__(self, image_tag: str, reason: str) -> None:
        self.image_tag = image_tag
        self.reason = reason
        super().__init__(f"Failed to build image {image_tag}: {reason}")


class ExecutionError(ShellboxError):
    """Base exception for errors raised once a container exists."""

    def __init__(self, message: str, container_id: str, image_tag: str) -> None:
        self.container_id = container_id
        self.image_tag = image_tag
        super().__init__(message)


class ExecutionTimeoutError(ExecutionError):
    """Raised when the command was killed at its timeout."""

    def __init__(self, command: str, container_id: str, image_tag: str) -> None:
        self.command = command
        super().__init__(
            f"process {command!r} in container {container_id} "
            f"from image {image_tag} has timed out",
            container_id,
            image_tag,
        )


class RunCancelledError(ExecutionError):
    """Raised when the caller cancels a run while waiting for the container."""

    def __init__(self, container_id: str, image_tag: str) -> None:
        super().__init__(
            f"run of container {container_id} from image {image_tag} was cancelled",
            container_id,
            image_tag,
        )


class EventStreamError(ExecutionError):
    """Raised when the lifecycle event stream cannot classify the exit."""

    def __init__(self, container_id: str, image_tag: str, reason: str) -> None:
        self.reason = reason
        super().__init__(
            f"Event stream for container {container_id} failed: {reason}",
            container_id,
            image_tag,
        )
