"""Build-context assembly for sandbox images."""

import io
import logging
import secrets
import tarfile
from contextlib import closing
from dataclasses import dataclass
from typing import BinaryIO

from shellbox.exceptions import BuildContextError
from shellbox.models import FileSet
from shellbox.security.containers import (
    SECCOMP_DEFAULT,
    SECCOMP_UNCONFINED,
    UNCONFINED_PROFILE_NAME,
)
from shellbox.security.paths import normalize_archive_path

logger = logging.getLogger(__name__)

DOCKERFILE_NAME = "Dockerfile"
ENTRY_MODE = 0o666


@dataclass
class BuildContext:
    """A tar stream ready for the engine's image build call."""

    stream: BinaryIO
    entry_count: int
    # Name the container's seccomp option must reference, if any
    seccomp_profile: str | None = None


def _add_entry(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.mode = ENTRY_MODE
    info.size = len(data)
    tar.addfile(info, io.BytesIO(data))


def _read_file(files: FileSet, index: int) -> tuple[str, bytes]:
    """Read one file fully, closing its stream on every path."""
    try:
        file = files[index]
    except OSError as e:
        raise BuildContextError(f"<file #{index}>", e) from e
    try:
        with closing(file.stream):
            data = file.stream.read()
    except OSError as e:
        raise BuildContextError(file.path, e) from e
    return normalize_archive_path(file.path), data


def make_build_context(files: FileSet, dockerfile: str, seccomp: str = SECCOMP_DEFAULT) -> BuildContext:
    """
    Serialize a file set and a Dockerfile into a single tar stream.

    Files are written in index order, followed by a ``Dockerfile`` entry.
    A custom seccomp profile is embedded under a random ``<hex>.json`` name;
    the ``unconfined`` selector is referenced by name without embedding.

    Args:
        files: Files to place in the build context
        dockerfile: Dockerfile contents
        seccomp: Seccomp profile document, or one of the profile selectors

    Returns:
        BuildContext positioned at the start of the archive

    Raises:
        BuildContextError: If a file cannot be read or the archive written
        PathTraversalError: If a file path does not name a file
    """
    buf = io.BytesIO()
    profile_name: str | None = None
    count = 0
    try:
        with tarfile.open(fileobj=buf, mode="w") as tar:
            for i in range(len(files)):
                path, data = _read_file(files, i)
                _add_entry(tar, path, data)
                count += 1
            _add_entry(tar, DOCKERFILE_NAME, dockerfile.encode())
            count += 1
            if seccomp == SECCOMP_UNCONFINED:
                profile_name = UNCONFINED_PROFILE_NAME
            elif seccomp != SECCOMP_DEFAULT:
                profile_name = secrets.token_hex(8) + ".json"
                _add_entry(tar, profile_name, seccomp.encode())
                count += 1
    except (OSError, tarfile.TarError) as e:
        raise BuildContextError("<archive>", e) from e
    logger.debug("Build context has %d entries (%d bytes)", count, buf.tell())
    buf.seek(0)
    return BuildContext(stream=buf, entry_count=count, seccomp_profile=profile_name)
