"""
Fixtures for attachment sync tests.

Provides an in-memory vault and a fake uploader so the sync engine can be
exercised without a filesystem or network.
"""

import pytest

from vaultsync.attachments.config import SyncSettings
from vaultsync.attachments.exceptions import (
    DocumentNotFoundError,
    StorageError,
    UploadError,
)
from vaultsync.attachments.vault import (
    AttachmentFile,
    DocumentReferences,
    DocumentStore,
    parse_references,
)


class InMemoryVault(DocumentStore):
    """Dict-backed vault that records writes and deletes in order."""

    def __init__(self, files=None):
        self.files: dict[str, bytes] = {}
        self.folders: set[str] = set()
        self.events: list[tuple[str, str]] = []
        self.fail_writes = False
        self.fail_renames: set[str] = set()
        for path, content in (files or {}).items():
            self.add(path, content)

    def add(self, path: str, content) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.files[path] = content
        self._add_parents(path)

    def _add_parents(self, path: str) -> None:
        parts = path.split("/")[:-1]
        for i in range(1, len(parts) + 1):
            self.folders.add("/".join(parts[:i]))

    def text(self, path: str) -> str:
        return self.files[path].decode("utf-8")

    def list_files(self, folder):
        prefix = folder.rstrip("/") + "/"
        return [AttachmentFile(p) for p in sorted(self.files) if p.startswith(prefix)]

    def list_documents(self):
        return [p for p in sorted(self.files) if p.endswith(".md")]

    def folder_exists(self, folder):
        return folder in self.folders

    def file_exists(self, path):
        return path in self.files

    def create_folder(self, folder):
        self._add_parents(folder + "/x")

    def read_binary(self, path):
        if path not in self.files:
            raise DocumentNotFoundError(f"File not found: {path}")
        return self.files[path]

    def read_text(self, path):
        return self.read_binary(path).decode("utf-8")

    def write_text(self, path, content):
        if self.fail_writes:
            raise StorageError(f"Failed to write {path}: disk full")
        self.files[path] = content.encode("utf-8")
        self.events.append(("write", path))

    def rename(self, path, new_path):
        if path in self.fail_renames:
            raise StorageError(f"Permission denied: {path}")
        if path not in self.files:
            raise DocumentNotFoundError(f"File not found: {path}")
        if new_path in self.files:
            raise StorageError(f"Destination already exists: {new_path}")
        self.files[new_path] = self.files.pop(path)
        self._add_parents(new_path)
        self.events.append(("rename", path))

    def delete(self, path):
        if path not in self.files:
            raise DocumentNotFoundError(f"File not found: {path}")
        del self.files[path]
        self.events.append(("delete", path))

    def get_references(self, document) -> DocumentReferences:
        return parse_references(self.read_text(document))


class FakeUploader:
    """Uploader returning predictable URLs; fails for names in ``fail_for``."""

    BASE_URL = "https://mybucket.oss-cn-guangzhou.aliyuncs.com/notes_assets"

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.uploaded: list[str] = []

    def upload(self, content, extension, name=""):
        if name in self.fail_for:
            raise UploadError("Upload failed: 403", status=403, body="AccessDenied")
        self.uploaded.append(name)
        return f"{self.BASE_URL}/{extension}-{len(self.uploaded)}.{extension}"

    def url(self, n: int, extension: str = "png") -> str:
        return f"{self.BASE_URL}/{extension}-{n}.{extension}"

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


@pytest.fixture
def settings():
    """Complete settings with attachments under assets/."""
    return SyncSettings(
        access_key_id="LTAIkey",
        access_key_secret="supersecret",
        bucket="mybucket",
        endpoint="oss-cn-guangzhou.aliyuncs.com",
        prefix="notes_assets",
        attachment_folder="assets",
    )


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def vault():
    return InMemoryVault()
