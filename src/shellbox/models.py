"""Core data models for Shellbox."""

import io
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol


@dataclass
class File:
    """A path in the build context and the stream holding its contents.

    The stream is consumed once and closed by the build-context assembler.
    """

    path: str
    stream: BinaryIO

    @classmethod
    def from_bytes(cls, path: str, data: bytes | str) -> "File":
        """Create a File backed by an in-memory buffer."""
        if isinstance(data, str):
            data = data.encode()
        return cls(path=path, stream=io.BytesIO(data))

    @classmethod
    def from_path(cls, path: str, source: Path | str) -> "File":
        """Create a File by opening a file on disk for reading."""
        return cls(path=path, stream=open(source, "rb"))


class FileSet(Protocol):
    """Ordered, index-addressable collection of files.

    A plain ``list[File]`` satisfies this protocol.
    """

    def __len__(self) -> int:
        """Number of files in the set."""
        ...

    def __getitem__(self, index: int) -> File:
        """Return the file at index, opening it if needed."""
        ...


class DirectoryFileSet:
    """FileSet backed by a directory tree, opening each file on access."""

    def __init__(self, root: Path | str, exclude: Iterable[str] = ()) -> None:
        """Scan root once so indexes stay stable for the life of the set.

        Args:
            root: Directory to scan
            exclude: Relative POSIX paths to leave out of the set
        """
        self.root = Path(root)
        if not self.root.is_dir():
            raise NotADirectoryError(f"Not a directory: {self.root}")
        excluded = set(exclude)
        self._paths = sorted(p for p in self._walk() if p not in excluded)

    def _walk(self) -> Iterator[str]:
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            for name in filenames:
                full = Path(dirpath) / name
                # Symlinks could point outside the root
                if full.is_symlink() or not full.is_file():
                    continue
                yield full.relative_to(self.root).as_posix()

    def __len__(self) -> int:
        return len(self._paths)

    def __getitem__(self, index: int) -> File:
        rel = self._paths[index]
        return File.from_path(rel, self.root / rel)


@dataclass
class ExecutionResult:
    """Result of a command that ran to completion in the sandbox."""

    command: str
    exit_code: int
    container_id: str
    image_tag: str

    @property
    def ok(self) -> bool:
        """Whether the command exited with status zero."""
        return self.exit_code == 0
