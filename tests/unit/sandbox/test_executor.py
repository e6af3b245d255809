"""Tests for the container executor."""

import io
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError, NotFound

from shellbox.exceptions import (
    BuildContextError,
    ExecutionTimeoutError,
    ImageBuildError,
    RunCancelledError,
)
from shellbox.models import File
from shellbox.sandbox.executor import Executor, random_id, stop_timeout_seconds
from shellbox.security.containers import SECCOMP_UNCONFINED, NetworkMode


class _EventStream:
    """Closeable event stream delivering a single die event."""

    def __init__(self, exit_code: str) -> None:
        self.exit_code = exit_code
        self.closed = False

    def __iter__(self):
        yield {"status": "die", "Actor": {"Attributes": {"exitCode": self.exit_code}}}

    def close(self) -> None:
        self.closed = True


class _BlockingEventStream:
    """Closeable event stream that delivers nothing until it is closed."""

    def __init__(self) -> None:
        self.closed = threading.Event()

    def __iter__(self):
        self.closed.wait(5)
        yield from ()

    def close(self) -> None:
        self.closed.set()


def _make_client(exit_code: str = "0", frames=None) -> MagicMock:
    """Create a mock docker client whose container exits with exit_code."""
    client = MagicMock()
    api = client.api
    api.build.return_value = iter([{"stream": "Step 1/1 : FROM alpine\n"}, {"stream": "done\n"}])
    api.attach.return_value = iter(frames if frames is not None else [(b"hi\n", None)])
    api.events.return_value = _EventStream(exit_code)
    return client


def _make_executor(client: MagicMock, **kwargs) -> Executor:
    defaults = {
        "dockerfile": "FROM alpine",
        "files": [File.from_bytes("main.sh", "echo hi")],
        "cmd": "sh main.sh",
        "timeout": 5,
        "client": client,
    }
    defaults.update(kwargs)
    return Executor(**defaults)


def _container_id(client: MagicMock) -> str:
    return client.api.create_container.call_args.kwargs["name"]


def _image_tag(client: MagicMock) -> str:
    return client.api.build.call_args.kwargs["tag"]


def _wait_for_stop(client: MagicMock, timeout: float = 2.0) -> None:
    """Wait for the background stop request to reach the engine."""
    deadline = time.monotonic() + timeout
    while not client.api.stop.called and time.monotonic() < deadline:
        time.sleep(0.01)


class TestHelpers:
    """Tests for module helpers."""

    def test_random_id_is_32_hex_chars(self) -> None:
        """Identifiers carry 16 bytes of randomness."""
        ident = random_id()
        assert len(ident) == 32
        int(ident, 16)
        assert random_id() != ident

    def test_stop_timeout_seconds(self) -> None:
        """Timeouts convert to whole engine seconds; no timeout is -1."""
        assert stop_timeout_seconds(None) == -1
        assert stop_timeout_seconds(-3) == -1
        assert stop_timeout_seconds(0) == 0
        assert stop_timeout_seconds(5) == 5
        assert stop_timeout_seconds(0.5) == 1


class TestExecute:
    """Tests for Executor.execute."""

    def test_successful_run_captures_stdout(self) -> None:
        """A command that exits 0 completes and its output is captured."""
        client = _make_client("0", frames=[(b"hi\n", None)])
        stdout, stderr = io.BytesIO(), io.BytesIO()
        executor = _make_executor(client, stdout=stdout, stderr=stderr)

        result = executor.execute()
        assert executor.wait_output(timeout=5)

        assert result.exit_code == 0
        assert result.command == "sh main.sh"
        assert stdout.getvalue() == b"hi\n"
        assert stderr.getvalue() == b""

    def test_timeout_exit_raises(self) -> None:
        """A container killed at its timeout raises ExecutionTimeoutError."""
        client = _make_client("137")
        executor = _make_executor(client, cmd="sleep 10", timeout=1)

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            executor.execute()

        err = exc_info.value
        assert err.command == "sleep 10"
        assert err.container_id == _container_id(client)
        assert err.image_tag == _image_tag(client)

    def test_nonzero_exit_completes(self) -> None:
        """A failing command is reported as a completed run."""
        client = _make_client("1")
        executor = _make_executor(client, cmd="ping -c1 8.8.8.8", network=NetworkMode.NONE)

        result = executor.execute()
        assert result.exit_code == 1
        assert result.ok is False

    def test_container_configuration(self) -> None:
        """The container runs the command under sh with the sandbox settings."""
        client = _make_client()
        _make_executor(client, network=NetworkMode.NONE, timeout=7).execute()

        api = client.api
        api.create_host_config.assert_called_once_with(runtime="runsc", network_mode="none")
        kwargs = api.create_container.call_args.kwargs
        assert kwargs["image"] == _image_tag(client)
        assert kwargs["command"] == ["sh", "-c", "sh main.sh"]
        assert kwargs["stop_timeout"] == 7
        assert kwargs["detach"] is False
        assert kwargs["host_config"] is api.create_host_config.return_value

    def test_custom_runtime(self) -> None:
        """The runtime is taken from the executor, not a global."""
        client = _make_client()
        _make_executor(client, runtime="runc").execute()
        assert client.api.create_host_config.call_args.kwargs["runtime"] == "runc"

    def test_custom_seccomp_profile_referenced(self) -> None:
        """A custom profile is referenced by its build-context name."""
        client = _make_client()
        _make_executor(client, seccomp='{"defaultAction": "SCMP_ACT_ALLOW"}').execute()

        security_opt = client.api.create_host_config.call_args.kwargs["security_opt"]
        assert len(security_opt) == 1
        assert security_opt[0].startswith("seccomp=")
        assert security_opt[0].endswith(".json")

    def test_unconfined_seccomp_referenced(self) -> None:
        """The unconfined selector uses its well-known name."""
        client = _make_client()
        _make_executor(client, seccomp=SECCOMP_UNCONFINED).execute()

        security_opt = client.api.create_host_config.call_args.kwargs["security_opt"]
        assert security_opt == ["seccomp=unconfined.json"]

    def test_ids_are_fresh_per_run(self) -> None:
        """Image tag and container id are random and distinct."""
        first, second = _make_client(), _make_client()
        _make_executor(first).execute()
        _make_executor(second).execute()

        assert _image_tag(first) != _image_tag(second)
        assert _container_id(first) != _container_id(second)
        assert _image_tag(first) != _container_id(first)

    def test_lifecycle_order(self) -> None:
        """Attach and start precede the stop request and the subscription."""
        client = _make_client()
        _make_executor(client).execute()
        _wait_for_stop(client)

        calls = [c[0] for c in client.api.method_calls]
        order = [n for n in calls if n in ("build", "create_container", "attach", "start", "stop", "events")]
        assert order[:4] == ["build", "create_container", "attach", "start"]
        assert sorted(order[4:]) == ["events", "stop"]

    def test_stop_uses_timeout(self) -> None:
        """The stop request carries the run's timeout."""
        client = _make_client()
        _make_executor(client, timeout=3).execute()
        _wait_for_stop(client)
        client.api.stop.assert_called_once_with(_container_id(client), timeout=3)

    def test_stop_without_timeout(self) -> None:
        """With no timeout the engine's stop timeout applies."""
        client = _make_client()
        _make_executor(client, timeout=None).execute()
        _wait_for_stop(client)

        client.api.stop.assert_called_once_with(_container_id(client))
        assert client.api.create_container.call_args.kwargs["stop_timeout"] == -1

    def test_stop_not_found_tolerated(self) -> None:
        """A container that is already gone does not fail the run."""
        client = _make_client()
        client.api.stop.side_effect = NotFound("no such container")

        assert _make_executor(client).execute().exit_code == 0

    def test_events_since_run_start(self) -> None:
        """The die-event subscription covers the container's whole life."""
        client = _make_client()
        with patch("shellbox.sandbox.executor.time.time", return_value=1700000000.7):
            _make_executor(client).execute()

        kwargs = client.api.events.call_args.kwargs
        assert kwargs["since"] == 1700000000
        assert kwargs["filters"]["event"] == "die"

    def test_shared_output_is_synchronized(self) -> None:
        """Identical stdout and stderr share one synchronized writer."""
        client = _make_client(frames=[(b"out\n", None), (None, b"err\n")])
        shared = io.BytesIO()
        executor = _make_executor(client, stdout=shared, stderr=shared)

        executor.execute()
        assert executor.wait_output(timeout=5)

        assert shared.getvalue() == b"out\nerr\n"

    def test_output_discarded_when_unset(self) -> None:
        """A run without output destinations still completes."""
        client = _make_client(frames=[(b"out\n", b"err\n")])
        executor = _make_executor(client)

        assert executor.execute().exit_code == 0
        assert executor.wait_output(timeout=5)

    def test_executor_is_single_use(self) -> None:
        """A second execute call is rejected."""
        executor = _make_executor(_make_client())
        executor.execute()
        with pytest.raises(RuntimeError, match="already been used"):
            executor.execute()


class TestFailures:
    """Tests for error paths and cleanup."""

    def test_image_removed_after_success(self) -> None:
        """The image is removed exactly once after a successful run."""
        client = _make_client()
        _make_executor(client).execute()
        client.api.remove_image.assert_called_once_with(_image_tag(client), force=True)

    def test_image_removed_after_timeout(self) -> None:
        """The image is removed exactly once after a timeout."""
        client = _make_client("137")
        with pytest.raises(ExecutionTimeoutError):
            _make_executor(client).execute()
        client.api.remove_image.assert_called_once_with(_image_tag(client), force=True)

    def test_container_removed_by_default(self) -> None:
        """The container is force-removed after the run."""
        client = _make_client()
        _make_executor(client).execute()
        client.api.remove_container.assert_called_once_with(_container_id(client), force=True)

    def test_container_kept_when_requested(self) -> None:
        """remove_container=False leaves the container in place."""
        client = _make_client()
        _make_executor(client, remove_container=False).execute()
        client.api.remove_container.assert_not_called()

    def test_build_error_raises(self) -> None:
        """An error in the build stream raises ImageBuildError."""
        client = _make_client()
        client.api.build.return_value = iter([{"stream": "Step 1/1"}, {"error": "bad FROM\n"}])

        with pytest.raises(ImageBuildError, match="bad FROM"):
            _make_executor(client).execute()
        client.api.create_container.assert_not_called()
        client.api.remove_image.assert_called_once()

    def test_file_error_aborts_before_container(self) -> None:
        """An unreadable file aborts the run before any container exists."""

        class Broken(io.BytesIO):
            def read(self, *args):
                raise OSError("boom")

        client = _make_client()
        executor = _make_executor(client, files=[File(path="x", stream=Broken())])

        with pytest.raises(BuildContextError):
            executor.execute()
        client.api.build.assert_not_called()
        client.api.create_container.assert_not_called()
        client.api.remove_image.assert_called_once()

    def test_create_error_propagates(self) -> None:
        """A create failure is raised verbatim."""
        client = _make_client()
        error = APIError("no such image")
        client.api.create_container.side_effect = error

        with pytest.raises(APIError) as exc_info:
            _make_executor(client).execute()
        assert exc_info.value is error
        client.api.start.assert_not_called()
        client.api.remove_image.assert_called_once()

    def test_start_error_stops_container(self) -> None:
        """A start failure closes the output stream and stops the container."""
        client = _make_client()
        frames = MagicMock()
        client.api.attach.return_value = frames
        client.api.start.side_effect = APIError("runtime runsc not found")

        with pytest.raises(APIError, match="runsc"):
            _make_executor(client).execute()

        frames.close.assert_called_once()
        client.api.stop.assert_called_once()
        client.api.events.assert_not_called()
        client.api.remove_image.assert_called_once()

    def test_attach_error_propagates(self) -> None:
        """A failure opening the output stream is raised verbatim."""
        client = _make_client()
        client.api.attach.side_effect = APIError("attach failed")

        with pytest.raises(APIError, match="attach failed"):
            _make_executor(client).execute()
        client.api.start.assert_not_called()
        client.api.remove_image.assert_called_once()

    def test_cleanup_errors_are_ignored(self) -> None:
        """Failing removals do not mask the run's result."""
        client = _make_client()
        client.api.remove_container.side_effect = APIError("busy")
        client.api.remove_image.side_effect = APIError("conflict")

        assert _make_executor(client).execute().exit_code == 0

    def test_cancelled_before_build(self) -> None:
        """A pre-set cancel event stops the run before building."""
        client = _make_client()
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RunCancelledError):
            _make_executor(client).execute(cancel)
        client.api.build.assert_not_called()
        client.api.remove_image.assert_called_once()

    def test_cancel_while_stop_blocks(self) -> None:
        """Cancelling during a long stop kills the container without waiting for the stop."""
        client = _make_client()
        released = threading.Event()
        client.api.stop.side_effect = lambda *args, **kwargs: released.wait(5)
        client.api.kill.side_effect = lambda *args, **kwargs: released.set()
        client.api.events.return_value = _BlockingEventStream()
        cancel = threading.Event()
        threading.Timer(0.1, cancel.set).start()

        started = time.monotonic()
        try:
            with pytest.raises(RunCancelledError):
                _make_executor(client, cmd="sleep 100", timeout=None).execute(cancel)
        finally:
            released.set()

        assert time.monotonic() - started < 2
        client.api.kill.assert_called_once_with(_container_id(client))
        client.api.remove_image.assert_called_once()

    def test_kill_errors_do_not_mask_cancellation(self) -> None:
        """A failed kill is logged and the run still reports cancellation."""
        client = _make_client()
        client.api.kill.side_effect = APIError("cannot kill")
        client.api.events.return_value = _BlockingEventStream()
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()

        with pytest.raises(RunCancelledError):
            _make_executor(client).execute(cancel)
        client.api.kill.assert_called_once()


class TestClientCreation:
    """Tests for the default engine client."""

    @patch("shellbox.sandbox.executor.docker.from_env")
    def test_client_from_environment(self, mock_from_env: MagicMock) -> None:
        """Without an injected client one is created from the environment."""
        mock_from_env.return_value = _make_client()
        executor = _make_executor(None, engine_timeout=30)

        executor.execute()
        mock_from_env.assert_called_once_with(timeout=30)

    @patch("shellbox.sandbox.executor.docker.from_env")
    def test_unbounded_client_without_timeout(self, mock_from_env: MagicMock) -> None:
        """A run with no timeout gets a client with no HTTP timeout."""
        mock_from_env.return_value = _make_client()
        _make_executor(None, timeout=None).execute()
        mock_from_env.assert_called_once_with(timeout=None)
