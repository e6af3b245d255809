"""Output routing for demultiplexed container streams."""

import logging
import threading
from collections.abc import Iterable
from typing import Protocol

logger = logging.getLogger(__name__)

# (stdout chunk, stderr chunk) as produced by docker-py's demux adaptor
Frame = tuple[bytes | None, bytes | None]


class Writer(Protocol):
    """Minimal binary writer accepted as an output destination."""

    def write(self, data: bytes, /) -> int | None: ...


class DiscardWriter:
    """Writer that drops everything written to it."""

    def write(self, data: bytes) -> int:
        return len(data)

    def flush(self) -> None:
        pass


class SyncWriter:
    """Serialize writes from concurrent callers onto one destination.

    Each write is flushed before the lock is released, so chunks from
    different producers never interleave.
    """

    def __init__(self, writer: Writer) -> None:
        self._writer = writer
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int | None:
        with self._lock:
            n = self._writer.write(data)
            flush = getattr(self._writer, "flush", None)
            if flush is not None:
                flush()
            return n

    def flush(self) -> None:
        pass


def resolve_outputs(stdout: Writer | None, stderr: Writer | None) -> tuple[Writer, Writer]:
    """
    Prepare the destinations for a run's standard streams.

    Unset destinations discard their output. When both streams go to the
    same destination they share a single SyncWriter.
    """
    out: Writer = stdout if stdout is not None else DiscardWriter()
    err: Writer = stderr if stderr is not None else DiscardWriter()
    if out is err:
        out = err = SyncWriter(out)
    return out, err


def copy_demuxed(frames: Iterable[Frame], stdout: Writer, stderr: Writer) -> int:
    """Write each demultiplexed frame to its stream's destination.

    Returns the number of bytes copied.
    """
    copied = 0
    for out, err in frames:
        if out:
            stdout.write(out)
            copied += len(out)
        if err:
            stderr.write(err)
            copied += len(err)
    return copied


class OutputPump:
    """Background thread copying a container's output stream."""

    def __init__(self, frames: Iterable[Frame], stdout: Writer, stderr: Writer) -> None:
        self.error: Exception | None = None
        self.copied = 0
        self._thread = threading.Thread(
            target=self._run,
            args=(frames, stdout, stderr),
            name="shellbox-output",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def _run(self, frames: Iterable[Frame], stdout: Writer, stderr: Writer) -> None:
        try:
            self.copied = copy_demuxed(frames, stdout, stderr)
        except Exception as e:
            self.error = e
            logger.warning("Output copy stopped early: %s", e)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the stream to drain. Returns False if still running."""
        self._thread.join(timeout)
        return not self._thread.is_alive()
