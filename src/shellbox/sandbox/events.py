"""Lifecycle-event race and exit classification."""

import logging
import queue
import threading
from typing import Any

from docker import APIClient

from shellbox.exceptions import EventStreamError, ExecutionTimeoutError, RunCancelledError
from shellbox.models import ExecutionResult

logger = logging.getLogger(__name__)

# 128 + SIGKILL: the status of a container killed when its stop timeout expires
TIMEOUT_EXIT_CODE = 137

# How often a blocked wait re-checks the caller's cancel event
CANCEL_POLL_INTERVAL = 0.1

_EVENT = "event"
_ERROR = "error"
_CLOSED = "closed"


class DieEventSubscription:
    """Subscription to ``die`` events for a single container.

    A reader thread feeds events and transport errors into one queue so
    that whichever arrives first can be taken by :meth:`next`.
    """

    def __init__(self, api: APIClient, container_id: str, image_tag: str, since: int) -> None:
        self.container_id = container_id
        self.image_tag = image_tag
        self._queue: queue.Queue[tuple[str, Any]] = queue.Queue()
        self._cancelled = threading.Event()
        self._stream = api.events(
            since=since,
            filters={"container": container_id, "image": image_tag, "event": "die"},
            decode=True,
        )
        self._reader = threading.Thread(target=self._read, name="shellbox-events", daemon=True)
        self._reader.start()

    def _read(self) -> None:
        try:
            for event in self._stream:
                self._queue.put((_EVENT, event))
        except Exception as e:
            if not self._cancelled.is_set():
                self._queue.put((_ERROR, e))
                return
        self._queue.put((_CLOSED, None))

    def next(self, cancel: threading.Event | None = None) -> tuple[str, Any]:
        """Block until an event, an error, or stream closure arrives.

        Anything already queued wins over a cancellation.
        """
        if cancel is None:
            return self._queue.get()
        while True:
            try:
                return self._queue.get_nowait()
            except queue.Empty:
                pass
            if cancel.is_set():
                raise RunCancelledError(self.container_id, self.image_tag)
            try:
                return self._queue.get(timeout=CANCEL_POLL_INTERVAL)
            except queue.Empty:
                continue

    def cancel(self) -> None:
        """Close the engine-side watch."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._stream.close()


def exit_code_of(event: dict[str, Any]) -> int:
    """Extract the process exit code from a ``die`` event."""
    attributes = (event.get("Actor") or {}).get("Attributes") or {}
    return int(attributes["exitCode"])


def classify_exit(exit_code: int, command: str, container_id: str, image_tag: str) -> ExecutionResult:
    """
    Map a container exit code to the run's outcome.

    Raises:
        ExecutionTimeoutError: If the container was killed at its stop timeout
    """
    if exit_code == TIMEOUT_EXIT_CODE:
        raise ExecutionTimeoutError(command, container_id, image_tag)
    return ExecutionResult(
        command=command,
        exit_code=exit_code,
        container_id=container_id,
        image_tag=image_tag,
    )


def wait_for_exit(
    subscription: DieEventSubscription,
    command: str,
    cancel: threading.Event | None = None,
) -> ExecutionResult:
    """
    Wait for the first terminal signal on a subscription and classify it.

    The subscription is cancelled as soon as a die event, an error or a
    cancellation is observed.

    Raises:
        ExecutionTimeoutError: If the command was killed at its timeout
        RunCancelledError: If ``cancel`` is set first
        EventStreamError: If the stream closes or the event is malformed
        docker.errors.DockerException: Transport errors, verbatim
    """
    container_id = subscription.container_id
    image_tag = subscription.image_tag
    try:
        kind, payload = subscription.next(cancel)
    finally:
        subscription.cancel()

    if kind == _ERROR:
        raise payload
    if kind == _CLOSED:
        raise EventStreamError(container_id, image_tag, "stream closed before the container died")

    logger.debug("Die event for %s: %s", container_id, payload)
    try:
        exit_code = exit_code_of(payload)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise EventStreamError(container_id, image_tag, f"unreadable exit code ({e})") from e
    return classify_exit(exit_code, command, container_id, image_tag)
