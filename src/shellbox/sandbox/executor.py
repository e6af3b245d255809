"""Docker container executor for sandboxed command execution."""

import logging
import math
import secrets
import threading
import time

import docker
from docker import APIClient
from docker.errors import APIError, NotFound

from shellbox.exceptions import ImageBuildError, RunCancelledError
from shellbox.models import ExecutionResult, FileSet
from shellbox.sandbox.context import BuildContext, make_build_context
from shellbox.sandbox.events import DieEventSubscription, wait_for_exit
from shellbox.sandbox.output import OutputPump, Writer, resolve_outputs
from shellbox.security.containers import (
    DEFAULT_RUNTIME,
    SECCOMP_DEFAULT,
    ContainerSecurityConfig,
    NetworkMode,
)

logger = logging.getLogger(__name__)

NO_TIMEOUT: float | None = None

# HTTP timeout for engine calls, on top of any stop grace period
DEFAULT_ENGINE_TIMEOUT = 60.0


def random_id(nbytes: int = 16) -> str:
    """Generate a hex identifier for images and containers."""
    return secrets.token_hex(nbytes)


def stop_timeout_seconds(timeout: float | None) -> int:
    """Convert a run timeout to the engine's whole-second stop timeout.

    ``-1`` tells the engine to wait for the container indefinitely.
    """
    if timeout is None or timeout < 0:
        return -1
    return math.ceil(timeout)


class Executor:
    """Run one shell command in a disposable sandbox container.

    An Executor is single-use: it holds per-run state once
    :meth:`execute` has been called, so construct a new one for each run.
    """

    def __init__(
        self,
        dockerfile: str,
        files: FileSet,
        cmd: str,
        timeout: float | None = NO_TIMEOUT,
        network: NetworkMode = NetworkMode.BRIDGE,
        seccomp: str = SECCOMP_DEFAULT,
        stdout: Writer | None = None,
        stderr: Writer | None = None,
        runtime: str = DEFAULT_RUNTIME,
        remove_container: bool = True,
        engine_timeout: float = DEFAULT_ENGINE_TIMEOUT,
        client: docker.DockerClient | None = None,
    ) -> None:
        """Initialize executor with the run's configuration.

        Args:
            dockerfile: Dockerfile used to build the container image
            files: Files copied into the build context
            cmd: Shell command run inside the container
            timeout: Seconds the command may run; None or negative for no limit.
                When exceeded, :meth:`execute` raises ExecutionTimeoutError.
            network: Container network policy
            seccomp: Seccomp profile JSON, ``"unconfined"``, or ``""`` for the
                engine default
            stdout: Destination for standard output (discarded if None)
            stderr: Destination for standard error (discarded if None).
                If it is the same object as stdout, writes are serialized.
            runtime: Container runtime, gVisor by default
            remove_container: Remove the container after the run
            engine_timeout: HTTP timeout for engine calls
            client: Docker client to use instead of one from the environment
        """
        self.dockerfile = dockerfile
        self.files = files
        self.cmd = cmd
        self.timeout = timeout
        self.network = network
        self.seccomp = seccomp
        self.stdout = stdout
        self.stderr = stderr
        self.runtime = runtime
        self.remove_container = remove_container
        self.engine_timeout = engine_timeout
        self._client = client
        self._seccomp_profile: str | None = None
        self._output: OutputPump | None = None
        self._started = False

    def _make_client(self) -> docker.DockerClient:
        if self._client is not None:
            return self._client
        stop_timeout = stop_timeout_seconds(self.timeout)
        # A stop without a deadline can block for as long as the command runs
        http_timeout = None if stop_timeout < 0 else self.engine_timeout
        return docker.from_env(timeout=http_timeout)

    def execute(self, cancel: threading.Event | None = None) -> ExecutionResult:
        """
        Build the image, run the command, and wait for the container to exit.

        The container timeout is separate from ``cancel``, which lets the
        caller abandon the run while it waits for the container.

        Args:
            cancel: Optional event that cancels the run when set

        Returns:
            ExecutionResult for a command that ran to completion, whatever
            its exit code

        Raises:
            ExecutionTimeoutError: If the command exceeded the timeout
            RunCancelledError: If ``cancel`` was set
            BuildContextError: If a file could not be read
            ImageBuildError: If the image build failed
            docker.errors.DockerException: Engine failures, verbatim
        """
        if self._started:
            raise RuntimeError("Executor has already been used; create a new one per run")
        self._started = True

        image_tag = random_id()
        container_id = random_id()
        client = self._make_client()
        api = client.api
        logger.info("Running %r in container %s (image %s)", self.cmd, container_id, image_tag)
        try:
            if cancel is not None and cancel.is_set():
                raise RunCancelledError(container_id, image_tag)
            context = make_build_context(self.files, self.dockerfile, self.seccomp)
            self._seccomp_profile = context.seccomp_profile
            self._build_image(api, context, image_tag)

            since = int(time.time())
            self._run_container(api, image_tag, container_id)
            # Stop blocks until the container exits, so it must not hold up the event wait
            stopper = threading.Thread(
                target=self._stop_container,
                args=(api, container_id),
                name="shellbox-stop",
                daemon=True,
            )
            stopper.start()
            subscription = DieEventSubscription(api, container_id, image_tag, since)
            try:
                result = wait_for_exit(subscription, self.cmd, cancel)
            except RunCancelledError:
                self._kill_container(api, container_id)
                raise
            logger.info("Container %s exited with status %d", container_id, result.exit_code)
            return result
        finally:
            self._cleanup(api, image_tag, container_id)

    def _build_image(self, api: APIClient, context: BuildContext, image_tag: str) -> None:
        """Build the image and drain the build output."""
        for chunk in api.build(
            fileobj=context.stream,
            custom_context=True,
            tag=image_tag,
            rm=True,
            forcerm=True,
            decode=True,
        ):
            if "error" in chunk:
                raise ImageBuildError(image_tag, str(chunk["error"]).strip())
            line = chunk.get("stream", "").rstrip()
            if line:
                logger.debug("build %s: %s", image_tag, line)

    def _run_container(self, api: APIClient, image_tag: str, container_id: str) -> None:
        """Create and start the container, streaming its output in the background."""
        security = ContainerSecurityConfig(
            runtime=self.runtime,
            network=self.network,
            seccomp_profile=self._seccomp_profile,
        )
        api.create_container(
            image=image_tag,
            command=["sh", "-c", self.cmd],
            name=container_id,
            detach=False,
            stop_timeout=stop_timeout_seconds(self.timeout),
            host_config=api.create_host_config(**security.to_host_config_kwargs()),
        )
        # Attach before starting so output from short commands is not missed
        frames = api.attach(
            container_id,
            stdout=True,
            stderr=True,
            stream=True,
            logs=True,
            demux=True,
        )
        try:
            api.start(container_id)
        except APIError:
            frames.close()
            self._stop_container(api, container_id)
            raise
        stdout, stderr = resolve_outputs(self.stdout, self.stderr)
        self._output = OutputPump(frames, stdout, stderr)
        self._output.start()

    def _stop_container(self, api: APIClient, container_id: str) -> None:
        """Ask the container to stop, letting the stop timeout bound the command.

        The shell is PID 1 and ignores SIGTERM, so the command keeps running
        until it exits or is killed when the stop timeout expires.
        """
        stop_timeout = stop_timeout_seconds(self.timeout)
        try:
            if stop_timeout < 0:
                api.stop(container_id)
            else:
                api.stop(container_id, timeout=stop_timeout)
        except NotFound:
            logger.debug("Container %s already gone before stop", container_id)
        except APIError as e:
            logger.warning("Failed to stop container %s: %s", container_id, e)

    def _kill_container(self, api: APIClient, container_id: str) -> None:
        """Kill a cancelled run's container. Failures are logged, not raised."""
        try:
            api.kill(container_id)
        except NotFound:
            pass  # Already gone
        except APIError as e:
            logger.warning("Failed to kill container %s: %s", container_id, e)

    def _cleanup(self, api: APIClient, image_tag: str, container_id: str) -> None:
        """Remove the run's container and image. Failures are logged, not raised."""
        if self.remove_container:
            try:
                api.remove_container(container_id, force=True)
            except NotFound:
                pass  # Never created, or already removed
            except APIError as e:
                logger.warning("Failed to remove container %s: %s", container_id, e)
        try:
            api.remove_image(image_tag, force=True)
        except NotFound:
            pass  # Build never produced it
        except APIError as e:
            logger.warning("Failed to remove image %s: %s", image_tag, e)

    def wait_output(self, timeout: float | None = None) -> bool:
        """Wait for the container's output to be fully written.

        Returns False if output is still being copied after ``timeout``.
        """
        if self._output is None:
            return True
        return self._output.join(timeout)
