"""Sandbox execution for Shellbox."""

from shellbox.sandbox.context import BuildContext, make_build_context
from shellbox.sandbox.executor import NO_TIMEOUT, Executor
from shellbox.sandbox.output import DiscardWriter, SyncWriter

__all__ = [
    "BuildContext",
    "DiscardWriter",
    "Executor",
    "NO_TIMEOUT",
    "SyncWriter",
    "make_build_context",
]
