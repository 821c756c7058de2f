"""Read-only access to the files inside a book package.

WHY: The resource route handler answers every sub-resource request the
rendering oracle makes by reading the requested path from the book
itself, never from the network or the host filesystem at large. EPUBs
arrive either zipped or already extracted.

HOW: BookPackage is a small protocol (read_bytes / exists). ZipBookPackage
reads members of an open zip archive; DirectoryBookPackage reads files
below an extracted root and refuses paths that escape it.

RULES:
- Paths are package-relative, "/" separated, no leading slash
- Missing paths raise FileNotFoundError (the handler decides severity)
- Packages never write
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Protocol


class BookPackage(Protocol):
    def read_bytes(self, path: str) -> bytes: ...

    def exists(self, path: str) -> bool: ...


class ZipBookPackage:
    """Book package backed by an EPUB zip archive.

    Use as a context manager, or call close() when done.
    """

    def __init__(self, epub_path: Path | str) -> None:
        self._path = Path(epub_path)
        self._zf = zipfile.ZipFile(self._path, "r")
        self._names = set(self._zf.namelist())

    def __enter__(self) -> ZipBookPackage:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()

    def close(self) -> None:
        self._zf.close()

    def exists(self, path: str) -> bool:
        return path in self._names

    def read_bytes(self, path: str) -> bytes:
        if path not in self._names:
            raise FileNotFoundError(f"{path} not found in {self._path.name}")
        with self._zf.open(path, "r") as handle:
            return handle.read()


class DirectoryBookPackage:
    """Book package backed by an extracted EPUB directory."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        candidate = (self._root / path).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise FileNotFoundError(f"{path} escapes the package root")
        return candidate

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except FileNotFoundError:
            return False

    def read_bytes(self, path: str) -> bytes:
        candidate = self._resolve(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"{path} not found in {self._root}")
        return candidate.read_bytes()


class MemoryBookPackage:
    """Book package held in a dict; used for normalized content and tests."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self._files = dict(files or {})

    def exists(self, path: str) -> bool:
        return path in self._files

    def read_bytes(self, path: str) -> bytes:
        try:
            return self._files[path]
        except KeyError:
            raise FileNotFoundError(path) from None


def open_book_package(path: Path | str) -> ZipBookPackage | DirectoryBookPackage:
    """Open an EPUB file or extracted EPUB directory."""
    path = Path(path)
    if path.is_dir():
        return DirectoryBookPackage(path)
    if zipfile.is_zipfile(path):
        return ZipBookPackage(path)
    raise ValueError(f"Cannot open book package {path}: not a directory or zip archive")
