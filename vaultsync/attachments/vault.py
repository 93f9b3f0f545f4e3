"""
Document store backends for attachment sync.

This module provides the abstract interface the sync engine uses to read
and modify a vault (a folder of Markdown documents plus attachments), and a
local filesystem implementation of it.
"""

import logging
import os
import posixpath
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List

from .exceptions import DocumentNotFoundError, InvalidPathError, StorageError

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSION = "md"


@dataclass(frozen=True)
class AttachmentFile:
    """A file in the vault, identified by its vault-relative POSIX path."""

    path: str

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def stem(self) -> str:
        """File name with its final extension removed."""
        name = self.name
        dot = name.rfind(".")
        return name[:dot] if dot > 0 else name

    @property
    def extension(self) -> str:
        name = self.name
        dot = name.rfind(".")
        return name[dot + 1 :].lower() if dot > 0 else ""

    @property
    def folder(self) -> str:
        return posixpath.dirname(self.path)

    def __str__(self) -> str:
        return self.path


@dataclass
class DocumentReferences:
    """Parsed references of one document: embeds (``![[x]]``, ``![](x)``) and links."""

    embeds: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)

    def all(self) -> List[str]:
        return [*self.embeds, *self.links]


class DocumentStore(ABC):
    """
    Abstract interface to the vault holding documents and attachments.

    All paths are vault-relative and ``/`` separated. The sync engine only
    talks to the vault through this interface, so it can run against the
    local filesystem or an in-memory fake.
    """

    @abstractmethod
    def list_files(self, folder: str) -> List[AttachmentFile]:
        """List every file below ``folder``, recursively."""

    @abstractmethod
    def list_documents(self) -> List[str]:
        """List the paths of every Markdown document in the vault."""

    @abstractmethod
    def folder_exists(self, folder: str) -> bool:
        """Check whether ``folder`` exists and is a folder."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check whether ``path`` exists and is a file."""

    @abstractmethod
    def create_folder(self, folder: str) -> None:
        """Create ``folder`` and any missing parents."""

    @abstractmethod
    def read_binary(self, path: str) -> bytes:
        """
        Read raw file bytes.

        Raises:
            DocumentNotFoundError: If the file doesn't exist
        """

    @abstractmethod
    def read_text(self, path: str) -> str:
        """
        Read a document's text.

        Raises:
            DocumentNotFoundError: If the document doesn't exist
        """

    @abstractmethod
    def write_text(self, path: str, content: str) -> None:
        """
        Replace a document's text. Returns only once the write is durable.

        Raises:
            StorageError: If writing fails
        """

    @abstractmethod
    def rename(self, path: str, new_path: str) -> None:
        """
        Move a file.

        Raises:
            StorageError: If the destination exists or the move fails
        """

    @abstractmethod
    def delete(self, path: str) -> None:
        """
        Delete a file.

        Raises:
            DocumentNotFoundError: If the file doesn't exist
        """

    @abstractmethod
    def get_references(self, document: str) -> DocumentReferences:
        """Return the parsed reference index of ``document``."""

    def process_text(self, path: str, fn: Callable[[str], str]) -> str:
        """Read a document, apply ``fn`` and write the result back if it changed.

        Returns:
            The document content after ``fn`` was applied
        """
        content = self.read_text(path)
        new_content = fn(content)
        if new_content != content:
            self.write_text(path, new_content)
        return new_content


# Reference index parsing, the way a Markdown editor's metadata cache sees it
_WIKI_EMBED_RE = re.compile(r"!\[\[([^\]]+)\]\]")
_MD_EMBED_RE = re.compile(r"!\[[^\]]*\]\(([^)]+)\)")
_WIKI_LINK_RE = re.compile(r"(?<!!)\[\[([^\]]+)\]\]")
_MD_LINK_RE = re.compile(r"(?<!!)\[[^\]]*\]\(([^)]+)\)")
_MD_TITLE_RE = re.compile(r'\s+"[^"]*"$')


def _wiki_target(raw: str) -> str:
    target = raw.split("|", 1)[0]
    return target.split("#", 1)[0].strip()


def _md_target(raw: str) -> str:
    target = raw.strip()
    # ![alt](<path with spaces> "title")
    if target.startswith("<") and ">" in target:
        return target[1 : target.index(">")]
    return _MD_TITLE_RE.sub("", target)


def parse_references(content: str) -> DocumentReferences:
    """Build the reference index for one document's text."""
    refs = DocumentReferences()
    for match in _WIKI_EMBED_RE.finditer(content):
        refs.embeds.append(_wiki_target(match.group(1)))
    for match in _MD_EMBED_RE.finditer(content):
        refs.embeds.append(_md_target(match.group(1)))
    for match in _WIKI_LINK_RE.finditer(content):
        refs.links.append(_wiki_target(match.group(1)))
    for match in _MD_LINK_RE.finditer(content):
        refs.links.append(_md_target(match.group(1)))
    refs.embeds = [r for r in refs.embeds if r]
    refs.links = [r for r in refs.links if r]
    return refs


class LocalVault(DocumentStore):
    """
    Local filesystem vault.

    Document writes are atomic (temp file + rename). Hidden files and
    folders, such as ``.obsidian`` or ``.vaultsync``, are never listed.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise StorageError(f"Vault root is not a directory: {self.root}")

    def _resolve(self, path: str) -> Path:
        """
        Validate a vault-relative path and return its absolute location.

        Raises:
            InvalidPathError: If the path is empty or escapes the vault root
        """
        if not path:
            raise InvalidPathError("Path cannot be empty")

        path = path.replace("\\", "/")
        if path.startswith("/"):
            raise InvalidPathError(f"Path must be relative: {path}")

        full_path = (self.root / path).resolve()
        try:
            full_path.relative_to(self.root)
        except ValueError:
            raise InvalidPathError(f"Path escapes vault root: {path}")
        return full_path

    def _relative(self, full_path: Path) -> str:
        return full_path.relative_to(self.root).as_posix()

    def _walk(self, base: Path):
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                yield Path(dirpath) / filename

    def list_files(self, folder: str) -> List[AttachmentFile]:
        base = self._resolve(folder)
        if not base.is_dir():
            return []
        return [AttachmentFile(self._relative(p)) for p in self._walk(base)]

    def list_documents(self) -> List[str]:
        return [
            self._relative(p)
            for p in self._walk(self.root)
            if p.suffix.lower() == f".{DOCUMENT_EXTENSION}"
        ]

    def folder_exists(self, folder: str) -> bool:
        return self._resolve(folder).is_dir()

    def file_exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except InvalidPathError:
            return False

    def create_folder(self, folder: str) -> None:
        self._resolve(folder).mkdir(parents=True, exist_ok=True)

    def read_binary(self, path: str) -> bytes:
        full_path = self._resolve(path)
        if not full_path.is_file():
            raise DocumentNotFoundError(f"File not found: {path}")
        return full_path.read_bytes()

    def read_text(self, path: str) -> str:
        full_path = self._resolve(path)
        if not full_path.is_file():
            raise DocumentNotFoundError(f"Document not found: {path}")
        with open(full_path, "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: str, content: str) -> None:
        full_path = self._resolve(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            fd, temp_path = tempfile.mkstemp(
                dir=full_path.parent,
                prefix=f".{full_path.name}.",
                suffix=".tmp",
                text=True,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, full_path)
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    def rename(self, path: str, new_path: str) -> None:
        source = self._resolve(path)
        target = self._resolve(new_path)
        if not source.is_file():
            raise DocumentNotFoundError(f"File not found: {path}")
        if target.exists():
            raise StorageError(f"Destination already exists: {new_path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.rename(source, target)
        except OSError as e:
            raise StorageError(f"Failed to move {path} to {new_path}: {e}") from e

    def delete(self, path: str) -> None:
        full_path = self._resolve(path)
        if not full_path.is_file():
            raise DocumentNotFoundError(f"File not found: {path}")
        full_path.unlink()
        logger.debug(f"Deleted {path}")

    def get_references(self, document: str) -> DocumentReferences:
        return parse_references(self.read_text(document))
